"""Explicit runtime context tying the registry, loader and scheduler together."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Sequence

from .config import get_framework_library, get_lib_paths
from .errors import NativeCallError
from .Library.loader import LibraryLoader, LoadResult, Opener
from .Library.native import FrameworkTable, ModelLibraryTable
from .Library.scheduler import Scheduler
from .Log import Log
from .Model.connections import ConnectionGraph, Endpoint
from .Model.instances import Location, ModelReference
from .Model.registry import MetadataRegistry
from .Model.resolver import PortResolver
from .Model.signals import SignalAccessor
from .options import SessionOptions


class Session:
    """One host process' view of the RSIS framework and its model libraries.

    Owns every component and releases them in reverse order on
    :meth:`close`. A session without a framework library can still load
    libraries, create models and access numeric signals; scheduler calls and
    string signals then raise :class:`NativeCallError`.

    Attributes:
        registry (MetadataRegistry): Schema trees of the loaded libraries.
        loader (LibraryLoader): Library links and model instances.
        resolver (PortResolver): Path to address resolution.
        signals (SignalAccessor): Typed signal reads and writes.
        connections (ConnectionGraph): Typed port links.
    """

    def __init__(
        self,
        options: SessionOptions | None = None,
        *,
        framework: FrameworkTable | None = None,
        opener: Opener | None = None,
        framework_opener: Callable[[Path], FrameworkTable] = FrameworkTable.open,
    ) -> None:
        self.options = options or SessionOptions()
        log_options = self.options.log
        self.logger = Log(
            log_file=log_options.log_file,
            level=log_options.level,
            debug_mode=log_options.debug,
            console=log_options.console,
        ).logger

        if framework is None:
            path = self.options.framework_library or get_framework_library()
            if path is not None:
                framework = framework_opener(Path(path))
                self.logger.info(f"Linked framework library {path}")
            else:
                self.logger.warning("No framework library found; scheduler calls are unavailable")
        self._framework = framework
        self._closed = False

        self.registry = MetadataRegistry(self.logger)
        self.loader = LibraryLoader(
            self.registry,
            search_paths=[*get_lib_paths(), *self.options.lib_paths],
            opener=opener or ModelLibraryTable.open,
            logger=self.logger,
        )
        self.resolver = PortResolver(self.registry)
        self.signals = SignalAccessor(self.resolver, self.loader, framework)
        self.connections = ConnectionGraph(self.resolver, self.loader, self.logger)
        self._scheduler = Scheduler(framework, self.loader, self.logger) if framework else None

        if self._scheduler is not None and self.options.initialize_framework:
            try:
                self._scheduler.initialize()
            except Exception:
                framework.close()
                raise

    # ---- lifecycle --------------------------------------------------------
    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            raise NativeCallError("Framework library is not loaded; no scheduler available")
        return self._scheduler

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Unload every library in reverse order, then release the framework."""

        if self._closed:
            return
        self._closed = True
        self.loader.unload_all()
        if self._framework is not None:
            try:
                if self.options.initialize_framework and self._scheduler is not None:
                    self._scheduler.shutdown()
            finally:
                self._framework.close()
        self.logger.info("Session closed")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ---- libraries --------------------------------------------------------
    def add_lib_path(self, directory: str | Path, *, force: bool = False) -> bool:
        return self.loader.add_lib_path(directory, force=force)

    def load(self, name: str, namespace: str = "", profile: str = "") -> LoadResult:
        return self.loader.load(name, namespace=namespace, profile=profile)

    def unload(self, name: str) -> bool:
        return self.loader.unload(name)

    # ---- models -----------------------------------------------------------
    def new_model(self, library: str, name: str, tags: Sequence[str] = ()) -> ModelReference:
        return self.loader.create_model(library, name, tags)

    def delete_model(self, model: ModelReference | str) -> bool:
        return self.loader.delete_model(model)

    def list_models(self) -> list[str]:
        return self.loader.list_models()

    def get(self, model: ModelReference | str, path: str) -> Any:
        return self.signals.get(model, path)

    def set(self, model: ModelReference | str, path: str, value: Any) -> None:
        self.signals.set(model, path, value)

    # ---- connections ------------------------------------------------------
    def connect(self, output: Endpoint, input: Endpoint) -> tuple[Location, Location]:
        return self.connections.connect(output, input)

    def list_connections(
        self, model: ModelReference | str | None = None
    ) -> list[tuple[Location, Location]]:
        return self.connections.list_connections(model)


__all__ = ["Session"]
