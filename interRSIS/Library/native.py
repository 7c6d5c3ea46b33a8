"""Capability tables bound once from the native shared libraries.

Each table is a frozen record of callables. :meth:`open` binds every entry
with its C signature and refuses to build a table with a missing symbol, so
an incomplete library fails at link time instead of at first use. Tests and
embedders may build tables directly from Python callables with the same
calling conventions.
"""

from __future__ import annotations

import ctypes
import os
from dataclasses import dataclass, fields
from enum import IntEnum
from functools import partial
from pathlib import Path
from typing import Any, Callable

import _ctypes

from ..errors import InvalidManifestError, LibraryNotFoundError


class Utf8Data(ctypes.Structure):
    """Length-prefixed UTF-8 buffer exchanged with the string calls."""

    _fields_ = [("pointer", ctypes.c_void_p), ("size", ctypes.c_uint64)]


# reflect() callbacks: class(name) and member(class, member, type_tag, offset)
ClassCallback = ctypes.CFUNCTYPE(None, ctypes.c_char_p)
MemberCallback = ctypes.CFUNCTYPE(
    None, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_size_t
)


class CmdStatus(IntEnum):
    OK = 0
    ERR = 1


class SchedulerState(IntEnum):
    """Mirror of the framework's scheduler state enum."""

    CONFIG = 0
    INITIALIZING = 1
    INITIALIZED = 2
    RUNNING = 3
    PAUSED = 4
    ENDING = 5
    ENDED = 6
    ERRORED = 7


def open_shared_library(path: str | Path) -> ctypes.CDLL:
    """Dynamically link ``path``."""

    try:
        return ctypes.CDLL(str(path))
    except OSError as exc:
        raise LibraryNotFoundError(f"Could not link shared library {path}: {exc}", path=str(path)) from exc


def close_shared_library(lib: ctypes.CDLL) -> None:
    """Release the link established by :func:`open_shared_library`."""

    if os.name == "nt":
        _ctypes.FreeLibrary(lib._handle)
    else:
        _ctypes.dlclose(lib._handle)


def _bind(lib: ctypes.CDLL, symbol: str, restype: Any, argtypes: list[Any]) -> Callable[..., Any]:
    try:
        func = getattr(lib, symbol)
    except AttributeError as exc:
        raise InvalidManifestError(
            f"Shared library {lib._name} does not export '{symbol}'", symbol=symbol
        ) from exc
    func.restype = restype
    func.argtypes = argtypes
    return func


def _require_callables(table: Any, skip: tuple[str, ...] = ("release",)) -> None:
    for entry in fields(table):
        if entry.name in skip:
            continue
        if not callable(getattr(table, entry.name)):
            raise InvalidManifestError(
                f"{type(table).__name__} entry '{entry.name}' is not available",
                symbol=entry.name,
            )


@dataclass(frozen=True, slots=True)
class ModelLibraryTable:
    """Calls exported by a model library.

    Attributes:
        create_model: ``() -> void*``; null on failure.
        reflect: ``(ClassCallback, MemberCallback) -> None``; one synchronous
            traversal reporting every class then its members.
        metadata: ``() -> const char*``; TOML schema text or null.
        release: Optional hook closing the underlying link.
    """

    create_model: Callable[[], int | None]
    reflect: Callable[[Any, Any], None]
    metadata: Callable[[], bytes | None]
    release: Callable[[], None] | None = None

    def __post_init__(self) -> None:
        _require_callables(self)

    @classmethod
    def open(cls, path: str | Path) -> "ModelLibraryTable":
        lib = open_shared_library(path)
        try:
            return cls(
                create_model=_bind(lib, "create_model", ctypes.c_void_p, []),
                reflect=_bind(lib, "reflect", None, [ClassCallback, MemberCallback]),
                metadata=_bind(lib, "metadata", ctypes.c_char_p, []),
                release=partial(close_shared_library, lib),
            )
        except InvalidManifestError:
            close_shared_library(lib)
            raise

    def close(self) -> None:
        if self.release is not None:
            self.release()


@dataclass(frozen=True, slots=True)
class FrameworkTable:
    """Calls exported by the RSIS framework (scheduler) library."""

    initialize: Callable[[], int]
    shutdown: Callable[[], int]
    new_thread: Callable[[float], int]
    add_model: Callable[[int, int, int, int], int | None]
    init_scheduler: Callable[[], int]
    step_scheduler: Callable[[int], int]
    pause_scheduler: Callable[[], int]
    run_scheduler: Callable[[], int]
    end_scheduler: Callable[[], int]
    get_state: Callable[[], int]
    get_scheduler_name: Callable[[], int]
    get_message: Callable[[], bytes | None]
    get_utf8: Callable[[int], Utf8Data]
    set_utf8: Callable[[int, Utf8Data], int]
    release: Callable[[], None] | None = None

    def __post_init__(self) -> None:
        _require_callables(self)

    @classmethod
    def open(cls, path: str | Path) -> "FrameworkTable":
        lib = open_shared_library(path)
        try:
            return cls(
                initialize=_bind(lib, "library_initialize", ctypes.c_uint32, []),
                shutdown=_bind(lib, "library_shutdown", ctypes.c_uint32, []),
                new_thread=_bind(lib, "new_thread", ctypes.c_uint32, [ctypes.c_double]),
                add_model=_bind(
                    lib,
                    "add_model",
                    ctypes.c_void_p,
                    [ctypes.c_int64, ctypes.c_void_p, ctypes.c_int64, ctypes.c_int64],
                ),
                init_scheduler=_bind(lib, "init_scheduler", ctypes.c_uint32, []),
                step_scheduler=_bind(lib, "step_scheduler", ctypes.c_uint32, [ctypes.c_uint64]),
                pause_scheduler=_bind(lib, "pause_scheduler", ctypes.c_uint32, []),
                run_scheduler=_bind(lib, "run_scheduler", ctypes.c_uint32, []),
                end_scheduler=_bind(lib, "end_scheduler", ctypes.c_uint32, []),
                get_state=_bind(lib, "get_scheduler_state", ctypes.c_int32, []),
                get_scheduler_name=_bind(lib, "get_scheduler_name", ctypes.c_int32, []),
                get_message=_bind(lib, "get_message", ctypes.c_char_p, []),
                get_utf8=_bind(lib, "get_utf8_string", Utf8Data, [ctypes.c_void_p]),
                set_utf8=_bind(
                    lib, "set_utf8_string", ctypes.c_uint32, [ctypes.c_void_p, Utf8Data]
                ),
                release=partial(close_shared_library, lib),
            )
        except InvalidManifestError:
            close_shared_library(lib)
            raise

    def close(self) -> None:
        if self.release is not None:
            self.release()


__all__ = [
    "ClassCallback",
    "CmdStatus",
    "FrameworkTable",
    "MemberCallback",
    "ModelLibraryTable",
    "SchedulerState",
    "Utf8Data",
    "close_shared_library",
    "open_shared_library",
]
