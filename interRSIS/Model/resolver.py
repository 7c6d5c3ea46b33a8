"""Turn ``(model, dotted path)`` into a native address and a port descriptor.

This module and :mod:`interRSIS.Model.signals` are the only places where raw
addresses inside native objects are computed.
"""

from __future__ import annotations

import ctypes
from dataclasses import dataclass

from ..errors import NativeCallError, NotFoundError, TypeMismatchError, UnsupportedTypeError
from ..types import is_supported
from .instances import ModelInstance
from .ports import LibraryData, Port
from .registry import MetadataRegistry


@dataclass(frozen=True, slots=True)
class ResolvedPort:
    """Bounded view of one leaf signal inside a live native object."""

    address: int
    port: Port
    path: str

    @property
    def nbytes(self) -> int:
        return self.port.nbytes


class PortResolver:
    """Resolve dotted field paths against the registered schema trees."""

    def __init__(self, registry: MetadataRegistry) -> None:
        self._registry = registry

    def resolve(self, instance: ModelInstance, path: str) -> ResolvedPort:
        """Return the address and descriptor of the leaf named by ``path``.

        Raises:
            NotFoundError: Unknown library or path segment.
            TypeMismatchError: Composite/leaf confusion along the path.
            UnsupportedTypeError: The leaf type is not a primitive.
        """

        library = self._registry.library(instance.library)
        offset, port = self._walk(library, instance.library, path)
        return ResolvedPort(self._root_address(library, instance) + offset, port, path)

    def describe(self, instance: ModelInstance, path: str) -> Port:
        """Validate ``path`` and return its port without touching native memory."""

        library = self._registry.library(instance.library)
        return self._walk(library, instance.library, path)[1]

    @staticmethod
    def _root_address(library: LibraryData, instance: ModelInstance) -> int:
        if not instance.obj:
            raise NativeCallError(f"Model {instance.name} has a null object pointer", model=instance.name)
        if not library.boxed:
            return instance.obj
        # Boxed representation: the handle points at a word holding the
        # object address. Fragile; tied to the native ABI of the language.
        base = ctypes.c_void_p.from_address(instance.obj).value
        if not base:
            raise NativeCallError(
                f"Model {instance.name} box holds a null object pointer", model=instance.name
            )
        return base

    @staticmethod
    def _walk(library: LibraryData, library_name: str, path: str) -> tuple[int, Port]:
        tokens = path.split(".") if path else []
        if not tokens or any(not token for token in tokens):
            raise NotFoundError(f"Invalid port path '{path}'", library=library_name, path=path)

        current = library.toplevel
        offset = 0
        for index, token in enumerate(tokens):
            struct = library.struct(current)
            if token not in struct:
                raise NotFoundError(
                    f"{token} is not a member of {current} (path '{path}')",
                    library=library_name,
                    path=path,
                    segment=token,
                    struct=current,
                )
            field_offset, port = struct.fields[token]
            offset += field_offset
            last = index == len(tokens) - 1
            if last:
                if port.composite:
                    raise TypeMismatchError(
                        f"{token} is a struct of type {port.type} but is accessed as a signal "
                        f"(path '{path}')",
                        path=path,
                        expected="signal",
                        actual=port.type,
                    )
                if not is_supported(port.type):
                    raise UnsupportedTypeError(
                        f"Signal {token} has type {port.type} which is not supported (path '{path}')",
                        path=path,
                        type=port.type,
                    )
                return offset, port
            if not port.composite:
                raise TypeMismatchError(
                    f"{token} is a signal of type {port.type} but is accessed as a struct "
                    f"(path '{path}')",
                    path=path,
                    expected="struct",
                    actual=port.type,
                )
            current = port.type
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["PortResolver", "ResolvedPort"]
