"""Exception taxonomy shared by every interRSIS component."""

from __future__ import annotations

from typing import Any


class RSISError(Exception):
    """Base class for all errors raised by interRSIS.

    Keyword arguments are stored as attributes so callers can inspect the
    offending entity without parsing the message.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context
        for key, value in context.items():
            setattr(self, key, value)


class NotFoundError(RSISError, LookupError):
    """Unknown library, model, struct, field or path segment."""


class AlreadyExistsError(RSISError, ValueError):
    """Duplicate model name or duplicate library registration."""


class TypeMismatchError(RSISError, TypeError):
    """Type, shape or unit disagreement, or composite/leaf confusion."""


class UnsupportedTypeError(RSISError, TypeError):
    """A leaf port whose type lies outside the primitive table."""


class NativeCallError(RSISError, RuntimeError):
    """A native call returned a non-zero status or a null pointer."""


class LibraryNotFoundError(RSISError, FileNotFoundError):
    """No manifest or shared object matches the requested library."""


class InvalidManifestError(RSISError, ValueError):
    """A manifest or its shared object is unreadable or incomplete."""


class InterfaceError(RSISError, ValueError):
    """A user interface schema cannot be turned into source code."""


__all__ = [
    "AlreadyExistsError",
    "InterfaceError",
    "InvalidManifestError",
    "LibraryNotFoundError",
    "NativeCallError",
    "NotFoundError",
    "RSISError",
    "TypeMismatchError",
    "UnsupportedTypeError",
]
