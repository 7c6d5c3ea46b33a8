"""Load and unload native model libraries and own their model instances."""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

from ..config import FRAMEWORK_VERSION, framework_major
from ..errors import (
    AlreadyExistsError,
    InvalidManifestError,
    LibraryNotFoundError,
    NativeCallError,
    NotFoundError,
)
from ..Log import Log
from ..Model.instances import ModelInstance, ModelReference, as_reference
from ..Model.registry import MetadataRegistry
from .manifest import Manifest, ManifestEntry, scan
from .native import ModelLibraryTable
from .reflection import reflect_schema

if TYPE_CHECKING:
    from loguru import Logger

Opener = Callable[[Path], ModelLibraryTable]


class LoadStatus(str, Enum):
    LOADED = "loaded"
    ALREADY_LOADED = "already loaded"


@dataclass(frozen=True, slots=True)
class LoadResult:
    """Outcome of :meth:`LibraryLoader.load`."""

    name: str
    status: LoadStatus
    profile: str = ""
    namespace: str = ""
    binary: Path | None = None

    def __str__(self) -> str:
        if self.status is LoadStatus.ALREADY_LOADED:
            return f"Model library {self.name} already loaded."
        suffix = f" => [{self.namespace}]" if self.namespace else ""
        return f"Loaded {self.name}: {self.profile}{suffix}"


@dataclass(slots=True)
class _LoadedLibrary:
    manifest: Manifest
    table: ModelLibraryTable
    namespace: str


class LibraryLoader:
    """Discover, link and release model libraries; create and delete models.

    Release always runs in reverse order of acquisition: a library's model
    instances are purged before its link is closed, then its metadata is
    dropped.
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        *,
        search_paths: Iterable[str | Path] = (),
        opener: Opener = ModelLibraryTable.open,
        logger: "Logger | None" = None,
    ) -> None:
        self._registry = registry
        self._opener = opener
        self._logger = logger or Log().logger
        self._paths: list[Path] = []
        self._libraries: dict[str, _LoadedLibrary] = {}
        self._models: dict[str, ModelInstance] = {}
        self._tags: set[str] = set()
        for path in search_paths:
            self.add_lib_path(path)

    # ---- search paths -----------------------------------------------------
    @property
    def lib_paths(self) -> list[Path]:
        return list(self._paths)

    def add_lib_path(self, directory: str | Path, *, force: bool = False) -> bool:
        """Append ``directory`` to the search path.

        Relative paths resolve against the working directory. A directory
        that does not exist is skipped with a warning unless ``force``.
        """

        path = Path(directory).expanduser().absolute()
        if not force and not path.is_dir():
            self._logger.warning(f"Path: {path} does not exist")
            return False
        if path not in self._paths:
            self._paths.append(path)
        return True

    def clear_lib_paths(self) -> None:
        self._paths = []

    def list_available(self) -> list[tuple[str, str, Path]]:
        """Return ``(library, profile, directory)`` for every discoverable manifest."""

        return [(entry.name, entry.profile, entry.directory) for entry in scan(self._paths)]

    def find(self, name: str, profile: str = "") -> ManifestEntry:
        """Return the first manifest for ``name`` matching ``profile`` (any when empty)."""

        for entry in scan(self._paths):
            if entry.name == name and (not profile or entry.profile == profile):
                return entry
        wanted = f" ({profile})" if profile else ""
        raise LibraryNotFoundError(
            f"Could not locate library: [{name}]{wanted} in {[str(p) for p in self._paths]}",
            library=name,
            profile=profile,
        )

    # ---- libraries --------------------------------------------------------
    def load(self, name: str, namespace: str = "", profile: str = "") -> LoadResult:
        """Link library ``name`` and register its schema.

        Loading a resident library is a no-op reported as
        :attr:`LoadStatus.ALREADY_LOADED`. Any failure after linking closes
        the link again so nothing is left half registered.

        Raises:
            LibraryNotFoundError: No manifest (or binary) matches.
            InvalidManifestError: Manifest, symbols or schema are unusable.
        """

        if name in self._libraries:
            result = LoadResult(name, LoadStatus.ALREADY_LOADED)
            self._logger.info(str(result))
            return result

        manifest = Manifest.read(self.find(name, profile))
        self._check_version(manifest)
        if not manifest.binary.exists():
            raise LibraryNotFoundError(
                f"Manifest for {name} names missing binary {manifest.binary}",
                library=name,
                path=str(manifest.binary),
            )

        table = self._opener(manifest.binary)
        try:
            schema, toplevel = self._schema_for(manifest, table)
            self._registry.register(
                name,
                schema,
                toplevel,
                namespace=namespace,
                language=manifest.language,
            )
        except Exception:
            table.close()
            raise

        self._libraries[name] = _LoadedLibrary(manifest, table, namespace)
        result = LoadResult(name, LoadStatus.LOADED, manifest.profile, namespace, manifest.binary)
        self._logger.info(str(result))
        return result

    def unload(self, name: str) -> bool:
        """Purge the library's models, close its link and drop its metadata."""

        loaded = self._libraries.get(name)
        if loaded is None:
            self._logger.warning(f"Model library {name} not previously loaded")
            return False
        for model in [m for m in self._models.values() if m.library == name]:
            del self._models[model.name]
        self._rebuild_tags()
        del self._libraries[name]
        try:
            loaded.table.close()
        finally:
            self._registry.unregister(name)
        self._logger.info(f"Unloaded {name}")
        return True

    def unload_all(self) -> None:
        for name in reversed(list(self._libraries)):
            self.unload(name)

    def list_libraries(self) -> list[str]:
        return list(self._libraries)

    def namespaces(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for name, loaded in self._libraries.items():
            grouped.setdefault(loaded.namespace, []).append(name)
        return grouped

    def library_info(self, name: str) -> dict[str, Any]:
        """Return the parsed manifest of a loaded library."""

        return self._loaded(name).manifest.raw

    def manifest(self, name: str) -> Manifest:
        return self._loaded(name).manifest

    # ---- models -----------------------------------------------------------
    def create_model(
        self, library: str, name: str, tags: Sequence[str] = ()
    ) -> ModelReference:
        """Instantiate a model from ``library`` under the unique ``name``.

        Raises:
            NotFoundError: ``library`` is not loaded.
            AlreadyExistsError: ``name`` is taken.
            NativeCallError: ``create_model`` returned null.
        """

        loaded = self._loaded(library)
        if name in self._models:
            raise AlreadyExistsError(f"Model: {name} already exists.", model=name)
        obj = loaded.table.create_model()
        if not obj:
            raise NativeCallError(
                f"Call to `create_model` in {library} returned NULL", library=library
            )
        instance = ModelInstance(library, name, tuple(tags), int(obj))
        self._models[name] = instance
        self._tags.update(instance.tags)
        self._logger.debug(f"Created model {name} from {library}")
        return instance.reference

    def delete_model(self, model: ModelReference | str) -> bool:
        ref = as_reference(model)
        if self._models.pop(ref.name, None) is None:
            self._logger.warning(f"No model with name: {ref.name}, exists")
            return False
        self._rebuild_tags()
        return True

    def instance(self, model: ModelReference | str) -> ModelInstance:
        ref = as_reference(model)
        try:
            return self._models[ref.name]
        except KeyError:
            raise NotFoundError(f"{ref.name} does not exist", model=ref.name) from None

    def has_model(self, name: str) -> bool:
        return name in self._models

    def list_models(self) -> list[str]:
        return list(self._models)

    def list_models_by_tag(self, tag: str) -> list[str]:
        return [name for name, model in self._models.items() if tag in model.tags]

    @property
    def tags(self) -> set[str]:
        return set(self._tags)

    # ---- internal helpers -------------------------------------------------
    def _loaded(self, name: str) -> _LoadedLibrary:
        try:
            return self._libraries[name]
        except KeyError:
            raise NotFoundError(f"Module: {name} is not loaded", library=name) from None

    def _rebuild_tags(self) -> None:
        self._tags = {tag for model in self._models.values() for tag in model.tags}

    def _check_version(self, manifest: Manifest) -> None:
        if not manifest.version:
            self._logger.warning(f"Manifest for {manifest.name} does not report a framework version")
        elif framework_major(manifest.version) != framework_major(FRAMEWORK_VERSION):
            self._logger.warning(
                f"{manifest.name} was built against framework {manifest.version}; "
                f"host is {FRAMEWORK_VERSION}"
            )

    def _schema_for(self, manifest: Manifest, table: ModelLibraryTable) -> tuple[dict[str, Any], str]:
        """Pick the schema: manifest first, then ``metadata()``, then ``reflect()``."""

        if manifest.schema is not None:
            return manifest.schema, manifest.toplevel

        text = table.metadata()
        if text:
            try:
                data = tomllib.loads(text.decode("utf-8") if isinstance(text, bytes) else text)
            except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
                self._logger.warning(f"Library {manifest.name} has invalid metadata. Error: {exc}")
            else:
                schema = data.get("schema", data)
                rsis = data.get("rsis")
                if not isinstance(rsis, Mapping):
                    rsis = {}
                if isinstance(schema, Mapping):
                    toplevel = str(rsis.get("model", rsis.get("name", manifest.toplevel)))
                    return dict(schema), toplevel
                self._logger.warning(
                    f"Library {manifest.name} has invalid metadata. Error: `schema` is a "
                    f"{type(schema).__name__}, not a table"
                )
        else:
            self._logger.debug(f"Library {manifest.name} does not have metadata. Null pointer returned")

        try:
            reflected = reflect_schema(table, manifest.language, self._logger)
        except InvalidManifestError as exc:
            raise InvalidManifestError(
                f"No schema available for {manifest.name}: manifest, metadata() and reflect() "
                f"are all empty",
                library=manifest.name,
            ) from exc
        return reflected.schema, reflected.toplevel


__all__ = ["LibraryLoader", "LoadResult", "LoadStatus"]
