"""Configuration helpers for locating the RSIS framework and model libraries."""

from __future__ import annotations

import os
import sys
from pathlib import Path

FRAMEWORK_VERSION = "0.1.0"


def library_prefix() -> str:
    """Return the shared-library file prefix for the running platform."""

    if sys.platform.startswith("win"):
        return ""
    return "lib"


def library_extension() -> str:
    """Return the shared-library file extension for the running platform."""

    if sys.platform.startswith("win"):
        return ".dll"
    if sys.platform == "darwin":
        return ".dylib"
    return ".so"


def framework_library_name() -> str:
    return f"{library_prefix()}rsis{library_extension()}"


def _default_project_root() -> Path:
    """Return the inferred project root directory."""

    return Path(__file__).resolve().parents[1]


def _default_framework_library() -> Path | None:
    """Return the first framework build found next to the project, if any."""

    project_root = _default_project_root()
    name = framework_library_name()
    candidates = [
        project_root / "core" / "target" / "release" / name,
        project_root / "core" / "target" / "debug" / name,
        project_root.parent / "core" / "target" / "release" / name,
        project_root.parent / "core" / "target" / "debug" / name,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate.resolve()
    return None


def get_framework_library() -> Path | None:
    """Resolve the framework shared library, honouring ``RSIS_FRAMEWORK_LIB``."""

    env_override = os.environ.get("RSIS_FRAMEWORK_LIB")
    if env_override:
        return Path(env_override).expanduser().resolve()
    return _default_framework_library()


def get_lib_paths() -> list[Path]:
    """Return model search directories listed in ``RSIS_LIB_PATH``."""

    raw = os.environ.get("RSIS_LIB_PATH", "")
    return [Path(part).expanduser() for part in raw.split(os.pathsep) if part.strip()]


def framework_major(version: str) -> str:
    return version.strip().split(".", 1)[0]


__all__ = [
    "FRAMEWORK_VERSION",
    "framework_library_name",
    "framework_major",
    "get_framework_library",
    "get_lib_paths",
    "library_extension",
    "library_prefix",
]
