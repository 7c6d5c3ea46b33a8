"""Typed reads and writes of model signals through resolved native addresses.

UNSAFE: values are copied straight into native process memory. The only
bounds are the dimensions declared by the schema, so correctness relies on
the metadata matching the compiled layout. Arrays are copied in the native
storage order; no row-major/column-major conversion is performed.
Access is not synchronised with native-side stepping.
"""

from __future__ import annotations

import ctypes
from typing import Any, Protocol

import numpy as np

from ..errors import NativeCallError, TypeMismatchError
from ..Library.native import Utf8Data
from ..types import coerce_value, primitive
from .instances import ModelInstance, ModelReference
from .resolver import PortResolver, ResolvedPort


class ModelLookup(Protocol):
    def instance(self, model: ModelReference | str) -> ModelInstance: ...


class StringCalls(Protocol):
    get_utf8: Any
    set_utf8: Any


class SignalAccessor:
    """Get and set leaf signals of live models."""

    def __init__(
        self,
        resolver: PortResolver,
        models: ModelLookup,
        strings: StringCalls | None = None,
    ) -> None:
        self._resolver = resolver
        self._models = models
        self._strings = strings

    def get(self, model: ModelReference | str, path: str) -> Any:
        """Return a copy of the signal at ``path``.

        Scalars come back as Python scalars of the declared width, arrays as
        a fresh ``ndarray`` that does not alias native memory, and strings as
        ``str`` fetched through the framework's string call.
        """

        resolved = self._resolver.resolve(self._models.instance(model), path)
        row = primitive(resolved.port.type)
        if row.is_string:
            return self._get_string(resolved)
        raw = ctypes.string_at(resolved.address, resolved.nbytes)
        array = np.frombuffer(raw, dtype=row.dtype).copy()
        if resolved.port.is_scalar:
            return array[0].item()
        return array.reshape(resolved.port.dims)

    def set(self, model: ModelReference | str, path: str, value: Any) -> None:
        """Write ``value`` to the signal at ``path``.

        Raises:
            TypeMismatchError: When the value type or shape disagrees with
                the port; nothing is written in that case.
            NativeCallError: When the native string setter reports failure.
        """

        resolved = self._resolver.resolve(self._models.instance(model), path)
        port = resolved.port
        checked = coerce_value(port.type, port.dims, value, where=f"'{path}'")
        if primitive(port.type).is_string:
            self._set_string(resolved, checked)
            return
        payload = np.ascontiguousarray(checked).tobytes()
        if len(payload) != resolved.nbytes:
            raise TypeMismatchError(
                f"Encoded value is {len(payload)} bytes but '{path}' holds {resolved.nbytes}",
                expected=resolved.nbytes,
                actual=len(payload),
            )
        ctypes.memmove(resolved.address, payload, len(payload))

    # ---- string marshalling -----------------------------------------------
    def _require_strings(self, path: str) -> StringCalls:
        if self._strings is None:
            raise NativeCallError(
                f"String signal '{path}' needs the framework library, which is not loaded",
                path=path,
            )
        return self._strings

    def _get_string(self, resolved: ResolvedPort) -> str:
        calls = self._require_strings(resolved.path)
        data = calls.get_utf8(resolved.address)
        if not data.size:
            return ""
        if not data.pointer:
            raise NativeCallError(
                f"get_utf8_string returned a null buffer for '{resolved.path}'", path=resolved.path
            )
        return ctypes.string_at(data.pointer, data.size).decode("utf-8")

    def _set_string(self, resolved: ResolvedPort, value: str) -> None:
        calls = self._require_strings(resolved.path)
        encoded = value.encode("utf-8")
        buffer = ctypes.create_string_buffer(encoded)
        data = Utf8Data(ctypes.addressof(buffer), len(encoded))
        status = calls.set_utf8(resolved.address, data)
        if status != 0:
            raise NativeCallError(
                f"set_utf8_string failed for '{resolved.path}' with status {status}",
                path=resolved.path,
                status=status,
            )


__all__ = ["ModelLookup", "SignalAccessor"]
