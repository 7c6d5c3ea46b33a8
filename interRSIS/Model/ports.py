"""Schema tree types: ports, per-struct field tables and per-library trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

from ..errors import NotFoundError, TypeMismatchError
from ..types import canonical_name, coerce_value, element_count, is_supported, primitive

# Native representations whose root handle is a pointer to the object pointer.
BOXED_LANGUAGES: frozenset[str] = frozenset({"rust"})


class PortDirection(Enum):
    PORT = 1
    PORTPTR = 2
    PORTPTRI = 3


@dataclass(frozen=True, slots=True, eq=True)
class Port:
    """Descriptor of a single struct field.

    A leaf port names a schema primitive; a composite port names another
    struct and never carries a default. Defaults on leaf ports of a supported
    type are checked against the type and dimension on construction.
    """

    type: str
    dims: tuple[int, ...] = ()
    unit: str = ""
    note: str = ""
    direction: PortDirection = PortDirection.PORT
    default: Any = None
    composite: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "dims", tuple(int(d) for d in self.dims))
        object.__setattr__(self, "unit", self.unit or "")
        if any(d < 0 for d in self.dims):
            raise ValueError(f"Port dimension {self.dims} contains a negative extent")
        if self.composite:
            if self.default is not None:
                raise ValueError(f"Composite port of type {self.type} cannot carry a default")
            return
        object.__setattr__(self, "type", canonical_name(self.type))
        if self.default is not None and is_supported(self.type):
            coerce_value(self.type, self.dims, self.default, where=f"default of {self.type} port")

    @property
    def is_scalar(self) -> bool:
        return not self.dims

    @property
    def count(self) -> int:
        return element_count(self.dims)

    @property
    def nbytes(self) -> int:
        if self.composite:
            raise TypeMismatchError(
                f"Port of type {self.type} is a struct and has no leaf size",
                type=self.type,
            )
        return primitive(self.type).itemsize * self.count


class StructField(NamedTuple):
    name: str
    offset: int
    port: Port


@dataclass(slots=True)
class ClassData:
    """Fields of one native struct keyed by name, with their byte offsets."""

    name: str
    fields: dict[str, tuple[int, Port]] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def __len__(self) -> int:
        return len(self.fields)

    def lookup(self, name: str) -> tuple[int, Port]:
        try:
            return self.fields[name]
        except KeyError:
            raise NotFoundError(
                f"{name} is not a member of {self.name}", struct=self.name, field=name
            ) from None

    def ordered(self) -> list[StructField]:
        """Return the fields sorted by ascending offset (native layout order)."""

        entries = [StructField(name, offset, port) for name, (offset, port) in self.fields.items()]
        return sorted(entries, key=lambda entry: entry.offset)


@dataclass(slots=True)
class LibraryData:
    """Complete schema tree of one loaded model library."""

    toplevel: str
    structs: dict[str, ClassData] = field(default_factory=dict)
    namespace: str = ""
    language: str = "cpp"

    @property
    def boxed(self) -> bool:
        """Whether the root object handle needs one level of pointer indirection."""

        return self.language.lower() in BOXED_LANGUAGES

    def struct(self, name: str) -> ClassData:
        try:
            return self.structs[name]
        except KeyError:
            raise NotFoundError(f"Struct {name} is not defined", struct=name) from None


__all__ = [
    "BOXED_LANGUAGES",
    "ClassData",
    "LibraryData",
    "Port",
    "PortDirection",
    "StructField",
]
