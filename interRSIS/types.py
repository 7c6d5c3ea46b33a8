"""Primitive type table shared by the host runtime and the interface generator.

Every schema primitive maps to exactly one numpy dtype (used when reading
and writing native memory) and to exactly one native type name per target
language (used when emitting source code). The table is bidirectional: the
type tags reported by a library's reflection routine are mapped back to
schema primitives with :func:`from_native`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from .errors import NotFoundError, TypeMismatchError, UnsupportedTypeError

LANGUAGES: tuple[str, ...] = ("cpp", "rust")


@dataclass(frozen=True, slots=True)
class PrimitiveType:
    """One row of the primitive table."""

    name: str
    dtype: np.dtype | None
    cpp: str
    rust: str
    default: Any

    @property
    def is_string(self) -> bool:
        return self.dtype is None

    @property
    def itemsize(self) -> int:
        if self.dtype is None:
            raise TypeMismatchError(
                f"{self.name} has no fixed native width", type=self.name
            )
        return int(self.dtype.itemsize)

    def native(self, language: str) -> str:
        if language == "cpp":
            return self.cpp
        if language == "rust":
            return self.rust
        raise ValueError(f"Unknown target language '{language}'; expected one of {LANGUAGES}")


def _row(name: str, dtype: str | None, cpp: str, rust: str, default: Any) -> PrimitiveType:
    return PrimitiveType(
        name=name,
        dtype=np.dtype(dtype) if dtype is not None else None,
        cpp=cpp,
        rust=rust,
        default=default,
    )


PRIMITIVES: dict[str, PrimitiveType] = {
    row.name: row
    for row in (
        _row("Int8", "int8", "int8_t", "i8", 0),
        _row("Int16", "int16", "int16_t", "i16", 0),
        _row("Int32", "int32", "int32_t", "i32", 0),
        _row("Int64", "int64", "int64_t", "i64", 0),
        _row("UInt8", "uint8", "uint8_t", "u8", 0),
        _row("UInt16", "uint16", "uint16_t", "u16", 0),
        _row("UInt32", "uint32", "uint32_t", "u32", 0),
        _row("UInt64", "uint64", "uint64_t", "u64", 0),
        _row("Bool", "bool", "bool", "bool", False),
        _row("Float32", "float32", "float", "f32", 0.0),
        _row("Float64", "float64", "double", "f64", 0.0),
        _row("ComplexF32", "complex64", "std::complex<float>", "Complex32", 0j),
        _row("ComplexF64", "complex128", "std::complex<double>", "Complex64", 0j),
        _row("String", None, "std::string", "String", ""),
    )
}

# Spellings accepted on input and normalised to the canonical name.
ALIASES: dict[str, str] = {
    "Complex{Float32}": "ComplexF32",
    "Complex{Float64}": "ComplexF64",
}

_NATIVE_TO_PRIMITIVE: dict[str, dict[str, str]] = {
    language: {row.native(language): row.name for row in PRIMITIVES.values()}
    for language in LANGUAGES
}

# Element kinds a plain Python value may carry for each dtype kind.
_COMPATIBLE_KINDS: dict[str, frozenset[str]] = {
    "b": frozenset("b"),
    "i": frozenset("iu"),
    "u": frozenset("iu"),
    "f": frozenset("f"),
    "c": frozenset("c"),
}

_TYPE_TAG = re.compile(r"^(?P<base>.+?)(?P<dims>(?:\[\d+\])*)$")


def canonical_name(name: str) -> str:
    return ALIASES.get(name, name)


def is_supported(name: str) -> bool:
    """Return ``True`` when ``name`` is a schema primitive."""

    return canonical_name(name) in PRIMITIVES


def primitive(name: str) -> PrimitiveType:
    """Return the table row for ``name``.

    Raises:
        UnsupportedTypeError: When ``name`` is not a schema primitive.
    """

    try:
        return PRIMITIVES[canonical_name(name)]
    except KeyError:
        raise UnsupportedTypeError(
            f"Type '{name}' is not supported; expected one of {sorted(PRIMITIVES)}",
            type=name,
        ) from None


def native_type(name: str, language: str) -> str:
    return primitive(name).native(language)


def from_native(native: str, language: str) -> str:
    """Map a target-language type name back to its schema primitive."""

    try:
        table = _NATIVE_TO_PRIMITIVE[language]
    except KeyError:
        raise ValueError(f"Unknown target language '{language}'; expected one of {LANGUAGES}") from None
    try:
        return table[native.strip()]
    except KeyError:
        raise NotFoundError(
            f"No primitive maps to {language} type '{native}'",
            type=native,
            language=language,
        ) from None


def format_type_tag(native: str, dims: Sequence[int]) -> str:
    """Return the reflection tag for a member, e.g. ``double[3][1]``."""

    return native + "".join(f"[{int(d)}]" for d in dims)


def parse_type_tag(tag: str) -> tuple[str, tuple[int, ...]]:
    """Split a reflection tag into its native type name and dimensions."""

    match = _TYPE_TAG.match(tag.strip())
    if match is None:
        raise ValueError(f"Malformed type tag '{tag}'")
    dims = tuple(int(d) for d in re.findall(r"\[(\d+)\]", match.group("dims")))
    return match.group("base").strip(), dims


def element_count(dims: Sequence[int]) -> int:
    return math.prod(dims)


def coerce_value(type_name: str, dims: Sequence[int], value: Any, *, where: str = "") -> Any:
    """Check ``value`` against a leaf descriptor and return its native form.

    Numeric values come back as an ``ndarray`` of the exact port dtype and
    shape; strings come back unchanged. numpy inputs must already carry the
    port dtype, while Python scalars and sequences only need the matching
    element kind (integers must also fit the declared width).

    Raises:
        TypeMismatchError: On any type, range or shape disagreement.
        UnsupportedTypeError: When ``type_name`` is not a primitive.
    """

    row = primitive(type_name)
    shape = tuple(int(d) for d in dims)
    label = f" for {where}" if where else ""

    if row.is_string:
        if shape:
            raise UnsupportedTypeError(
                f"String arrays are not supported{label}", type=type_name, dims=shape
            )
        if not isinstance(value, str):
            raise TypeMismatchError(
                f"Expected str{label}, got {type(value).__name__}",
                expected=row.name,
                actual=type(value).__name__,
            )
        return value

    assert row.dtype is not None
    if isinstance(value, str):
        raise TypeMismatchError(
            f"Expected {row.name}{label}, got str", expected=row.name, actual="str"
        )
    if isinstance(value, (np.ndarray, np.generic)):
        array = np.asarray(value)
        if array.dtype != row.dtype:
            raise TypeMismatchError(
                f"Value dtype {array.dtype.name} does not match port type {row.name}{label}",
                expected=row.dtype.name,
                actual=array.dtype.name,
            )
    else:
        try:
            array = np.asarray(value)
        except ValueError as exc:
            raise TypeMismatchError(
                f"Value is not a rectangular array{label}: {exc}",
                expected=row.name,
                actual=type(value).__name__,
            ) from exc
        kind = array.dtype.kind
        if kind not in _COMPATIBLE_KINDS[row.dtype.kind]:
            raise TypeMismatchError(
                f"Value element type {array.dtype.name} does not match port type {row.name}{label}",
                expected=row.name,
                actual=array.dtype.name,
            )
        if row.dtype.kind in "iu" and array.size:
            info = np.iinfo(row.dtype)
            low, high = int(array.min()), int(array.max())
            if low < info.min or high > info.max:
                raise TypeMismatchError(
                    f"Value range [{low}, {high}] does not fit {row.name}{label}",
                    expected=row.name,
                    actual=f"[{low}, {high}]",
                )
        with np.errstate(over="ignore", invalid="ignore"):
            narrowed = array.astype(row.dtype)
        if row.dtype.kind in "fc" and array.size:
            overflow = np.isfinite(array) & ~np.isfinite(narrowed)
            if overflow.any():
                raise TypeMismatchError(
                    f"Value {array[overflow].flat[0]} overflows {row.name}{label}",
                    expected=row.name,
                    actual=str(array.dtype),
                )
        array = narrowed

    if array.shape != shape:
        raise TypeMismatchError(
            f"Value shape {array.shape} does not match port dimension {shape}{label}",
            expected=shape,
            actual=array.shape,
        )
    return array


__all__ = [
    "ALIASES",
    "LANGUAGES",
    "PRIMITIVES",
    "PrimitiveType",
    "canonical_name",
    "coerce_value",
    "element_count",
    "format_type_tag",
    "from_native",
    "is_supported",
    "native_type",
    "parse_type_tag",
    "primitive",
]
