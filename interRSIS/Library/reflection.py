"""One-shot reflection traversal turning native callbacks into a schema.

A model library's ``reflect`` export calls back into the host once per class
and once per member, synchronously, during a single call. The callbacks only
record raw tuples; interpretation happens after the call returns so that no
Python exception is ever raised inside a native frame, and no callback
object outlives the traversal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..errors import InvalidManifestError, NotFoundError
from ..Log import Log
from ..types import from_native, parse_type_tag
from .native import ClassCallback, MemberCallback, ModelLibraryTable

if TYPE_CHECKING:
    from loguru import Logger


@dataclass(frozen=True, slots=True)
class ReflectedMember:
    owner: str
    name: str
    type_tag: str
    offset: int


@dataclass(frozen=True, slots=True)
class ReflectedSchema:
    """Immutable result of a traversal, in the order classes were reported."""

    classes: tuple[str, ...]
    members: tuple[ReflectedMember, ...]
    schema: dict[str, dict[str, dict]] = field(hash=False, compare=False)

    @property
    def toplevel(self) -> str:
        # generated code reports dependencies first and the model itself last
        return self.classes[-1]


def _decode(raw: bytes | None) -> str:
    return (raw or b"").decode("utf-8", errors="replace")


def collect(table: ModelLibraryTable) -> tuple[list[str], list[ReflectedMember]]:
    """Run the traversal and return the raw class names and members."""

    classes: list[str] = []
    members: list[ReflectedMember] = []

    def _on_class(name: bytes | None) -> None:
        classes.append(_decode(name))

    def _on_member(owner: bytes | None, name: bytes | None, tag: bytes | None, offset: int) -> None:
        members.append(ReflectedMember(_decode(owner), _decode(name), _decode(tag), int(offset)))

    class_cb = ClassCallback(_on_class)
    member_cb = MemberCallback(_on_member)
    table.reflect(class_cb, member_cb)
    del class_cb, member_cb
    return classes, members


def reflect_schema(
    table: ModelLibraryTable, language: str, logger: "Logger | None" = None
) -> ReflectedSchema:
    """Rebuild a registry schema from the library's reflection routine.

    Member type tags are mapped back through the primitive table; a tag
    naming a reported class becomes a composite reference, and any other tag
    is kept verbatim so the resolver can report it as unsupported.

    Raises:
        InvalidManifestError: When the traversal reports no classes.
    """

    log = logger or Log().logger
    classes, members = collect(table)
    if not classes:
        raise InvalidManifestError("Library reflection reported no classes")

    known = set(classes)
    schema: dict[str, dict[str, dict]] = {name: {} for name in classes}
    for member in members:
        if member.owner not in known:
            log.warning(f"Reflected member {member.owner}.{member.name} names an unreported class")
            continue
        try:
            base, dims = parse_type_tag(member.type_tag)
        except ValueError as exc:
            log.warning(f"Reflected member {member.owner}.{member.name}: {exc}")
            continue
        entry: dict[str, object] = {"offset": member.offset, "dims": list(dims)}
        if base in known:
            entry["class"] = base
        else:
            try:
                entry["type"] = from_native(base, language)
            except (NotFoundError, ValueError):
                entry["type"] = base
        schema[member.owner][member.name] = entry
    return ReflectedSchema(tuple(classes), tuple(members), schema)


__all__ = ["ReflectedMember", "ReflectedSchema", "collect", "reflect_schema"]
