"""Host-side access to RSIS native model libraries."""

from __future__ import annotations

from importlib import import_module

from .config import FRAMEWORK_VERSION
from .errors import (
    AlreadyExistsError,
    InterfaceError,
    InvalidManifestError,
    LibraryNotFoundError,
    NativeCallError,
    NotFoundError,
    RSISError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from .Model.instances import Location, ModelReference
from .options import LogOptions, SessionOptions
from .session import Session

__version__ = FRAMEWORK_VERSION


def __getattr__(name: str):
    # the generator pulls in Jinja2 and PyYAML; load it on first use
    if name in {"Interface", "generate_interface"}:
        module = import_module(".Interface", __name__)
        globals()["Interface"] = module
        globals()["generate_interface"] = module.generate_interface
        return globals()[name]
    raise AttributeError(name)


__all__ = [
    "AlreadyExistsError",
    "Interface",
    "InterfaceError",
    "InvalidManifestError",
    "LibraryNotFoundError",
    "Location",
    "LogOptions",
    "ModelReference",
    "NativeCallError",
    "NotFoundError",
    "RSISError",
    "Session",
    "SessionOptions",
    "TypeMismatchError",
    "UnsupportedTypeError",
    "__version__",
    "generate_interface",
]
