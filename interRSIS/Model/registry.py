"""Per-library schema trees describing the byte layout of native structs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..errors import InvalidManifestError, NotFoundError
from ..Log import Log
from .ports import ClassData, LibraryData, Port, StructField

if TYPE_CHECKING:
    from loguru import Logger


def _parse_offset(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"offset {raw!r} is not an integer")
    if raw < 0:
        raise ValueError(f"offset {raw} is negative")
    return raw


def _parse_dims(raw: Any) -> tuple[int, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"dims {raw!r} is not a list")
    dims: list[int] = []
    for extent in raw:
        if isinstance(extent, bool) or not isinstance(extent, int) or extent < 0:
            raise ValueError(f"dims {raw!r} must hold non-negative integers")
        dims.append(extent)
    return tuple(dims)


class MetadataRegistry:
    """Own the schema tree of every loaded library.

    Schemas are mappings of struct name to field table. A field is either a
    composite reference ``{"class": <struct>, "offset": n}`` or a leaf
    ``{"type": <primitive>, "offset": n, "dims": [...], "unit": "..."}``.
    Offsets are taken verbatim from the native build.
    """

    def __init__(self, logger: "Logger | None" = None) -> None:
        self._libraries: dict[str, LibraryData] = {}
        self._logger = logger or Log().logger

    def __contains__(self, library: object) -> bool:
        return library in self._libraries

    def register(
        self,
        library: str,
        schema: Mapping[str, Any],
        toplevel: str,
        *,
        namespace: str = "",
        language: str = "cpp",
    ) -> LibraryData:
        """Build and store the tree for ``library`` starting at ``toplevel``.

        Individually corrupt fields are skipped with a warning. The tree is
        only stored once fully built, so a failure leaves no partial entry.

        Raises:
            InvalidManifestError: When ``schema`` is not a table or ``toplevel``
                is not described at all.
        """

        if not isinstance(schema, Mapping):
            raise InvalidManifestError(
                f"Schema for library {library} must be a table of structs, got {type(schema).__name__}",
                library=library,
            )
        if not isinstance(schema.get(toplevel), Mapping):
            raise InvalidManifestError(
                f"Schema for library {library} does not define its top-level struct {toplevel}",
                library=library,
                struct=toplevel,
            )
        if library in self._libraries:
            self._logger.warning(
                f"Library {library} already registered. Metadata overwrite/corruption may occur"
            )

        data = LibraryData(toplevel=toplevel, namespace=namespace, language=language)
        self._build_struct(library, data, schema, toplevel, set())
        self._libraries[library] = data
        self._logger.debug(
            f"Registered {len(data.structs)} struct(s) for {library} (top-level {toplevel})"
        )
        return data

    def unregister(self, library: str) -> bool:
        """Discard the whole tree of ``library``; returns whether one existed."""

        if self._libraries.pop(library, None) is None:
            self._logger.warning(f"No metadata registered for library {library}")
            return False
        return True

    def libraries(self) -> list[str]:
        return list(self._libraries)

    def library(self, library: str) -> LibraryData:
        try:
            return self._libraries[library]
        except KeyError:
            raise NotFoundError(f"Library {library} has no registered metadata", library=library) from None

    def libraries_in(self, namespace: str) -> list[str]:
        return [name for name, data in self._libraries.items() if data.namespace == namespace]

    def struct_names(self, library: str) -> list[str]:
        """Return every struct reflected for ``library``, dependencies first."""

        return list(self.library(library).structs)

    def struct_fields(self, library: str, struct: str) -> list[StructField]:
        """Return the fields of ``struct`` ordered by ascending offset."""

        data = self.library(library)
        if struct not in data.structs:
            raise NotFoundError(
                f"{struct} not defined in library {library}", library=library, struct=struct
            )
        return data.structs[struct].ordered()

    def find_struct(self, struct: str, namespace: str | None = None) -> list[tuple[str, ClassData]]:
        """Return ``(library, ClassData)`` pairs defining ``struct``.

        Restricting to ``namespace`` disambiguates identically named structs
        coming from different libraries.
        """

        matches: list[tuple[str, ClassData]] = []
        for name, data in self._libraries.items():
            if namespace is not None and data.namespace != namespace:
                continue
            if struct in data.structs:
                matches.append((name, data.structs[struct]))
        return matches

    # ---- internal helpers -------------------------------------------------
    def _build_struct(
        self,
        library: str,
        data: LibraryData,
        schema: Mapping[str, Any],
        name: str,
        pending: set[str],
    ) -> bool:
        """Post-order build of ``name``; returns whether it is now defined."""

        if name in data.structs:
            return True
        if name in pending:
            self._logger.warning(f"[{library}] Recursive struct reference through {name}")
            return False
        raw = schema.get(name)
        if not isinstance(raw, Mapping):
            self._logger.warning(f"[{library}] Struct {name} is referenced but not described")
            return False

        pending.add(name)
        classdata = ClassData(name)
        offsets: dict[int, str] = {}
        for field_name, tags in raw.items():
            parsed = self._parse_field(library, data, schema, name, field_name, tags, pending)
            if parsed is None:
                continue
            offset, port = parsed
            if offset in offsets:
                self._logger.warning(
                    f"[{library}] {name}.{field_name} shares offset {offset} with "
                    f"{name}.{offsets[offset]}; skipped"
                )
                continue
            offsets[offset] = field_name
            classdata.fields[str(field_name)] = (offset, port)
        pending.discard(name)
        data.structs[name] = classdata
        return True

    def _parse_field(
        self,
        library: str,
        data: LibraryData,
        schema: Mapping[str, Any],
        struct: str,
        field_name: str,
        tags: Any,
        pending: set[str],
    ) -> tuple[int, Port] | None:
        where = f"[{library}] {struct}.{field_name}"
        if not isinstance(tags, Mapping):
            self._logger.warning(f"{where}: invalid metadata detected; skipped")
            return None
        if "offset" not in tags:
            self._logger.warning(f"{where}: corrupt metadata, no offset; skipped")
            return None
        try:
            offset = _parse_offset(tags["offset"])
            dims = _parse_dims(tags.get("dims"))
        except ValueError as exc:
            self._logger.warning(f"{where}: corrupt field metadata, {exc}; skipped")
            return None
        note = str(tags.get("desc", "") or "")

        if "class" in tags:
            target = str(tags["class"])
            if not self._build_struct(library, data, schema, target, pending):
                self._logger.warning(f"{where}: composite type {target} unavailable; skipped")
                return None
            return offset, Port(target, dims, note=note, composite=True)

        if "type" in tags:
            if "dims" not in tags:
                self._logger.warning(f"{where}: corrupt field metadata, no dims; skipped")
                return None
            unit = tags.get("unit") or ""
            try:
                port = Port(str(tags["type"]), dims, unit=str(unit), note=note)
            except ValueError as exc:
                self._logger.warning(f"{where}: {exc}; skipped")
                return None
            return offset, port

        self._logger.warning(f"{where}: neither 'class' nor 'type' given; skipped")
        return None


__all__ = ["MetadataRegistry"]
