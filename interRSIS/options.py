"""Configuration dataclasses for an interRSIS session."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence


@dataclass(slots=True)
class LogOptions:
    """Logging configuration.

    Attributes:
        level (str): Minimum level emitted to the console and the log file.
        log_file (str | Path | None): Optional file receiving a copy of every
            record. Parent directories are created on demand.
        debug (bool): Force the console sink down to ``DEBUG`` regardless of
            ``level``.
        console (bool): Disable to keep the session silent on stdout.
    """

    level: str = "INFO"
    log_file: str | Path | None = None
    debug: bool = False
    console: bool = True


@dataclass(slots=True)
class SessionOptions:
    """Top-level configuration consumed by :class:`interRSIS.session.Session`.

    Attributes:
        framework_library (str | Path | None): Path to the RSIS framework
            shared library. ``None`` falls back to ``RSIS_FRAMEWORK_LIB`` and
            the default build locations; when nothing is found the session
            runs without a scheduler and without string marshalling.
        lib_paths (Sequence[str | Path]): Directories searched for model
            manifests in addition to ``RSIS_LIB_PATH``.
        initialize_framework (bool): Call the framework's initialise entry
            point when the session opens it.
        log (LogOptions): Logging configuration.
    """

    framework_library: str | Path | None = None
    lib_paths: Sequence[str | Path] = ()
    initialize_framework: bool = True
    log: LogOptions = field(default_factory=LogOptions)


__all__ = ["LogOptions", "SessionOptions"]
