from __future__ import annotations

import ctypes
import json
from pathlib import Path

import pytest
from loguru import logger

from interRSIS.Library.loader import LibraryLoader
from interRSIS.Library.manifest import manifest_filename
from interRSIS.Library.native import FrameworkTable, ModelLibraryTable, SchedulerState, Utf8Data
from interRSIS.Model.connections import ConnectionGraph
from interRSIS.Model.registry import MetadataRegistry
from interRSIS.Model.resolver import PortResolver
from interRSIS.Model.signals import SignalAccessor

OBJECT_SIZE = 512


def sat_schema() -> dict:
    """Layout of the ``Sat`` test model; offsets follow C alignment rules."""

    return {
        "Sat": {
            "inputs": {"class": "Sat_inputs", "offset": 0},
            "outputs": {"class": "Sat_outputs", "offset": 96},
            "data": {"class": "Sat_data", "offset": 176},
            "handle": {"type": "Pointer", "offset": 240, "dims": []},
        },
        "Sat_inputs": {
            "voltage": {"type": "Float64", "offset": 0, "dims": [], "unit": "V"},
            "position": {"type": "Float64", "offset": 8, "dims": [3], "unit": "m"},
            "pos_col": {"type": "Float64", "offset": 32, "dims": [3, 1], "unit": "m"},
            "count": {"type": "Int32", "offset": 56, "dims": []},
            "enabled": {"type": "Bool", "offset": 60, "dims": []},
            "label": {"type": "String", "offset": 64, "dims": []},
            "current": {"type": "Float32", "offset": 72, "dims": [], "unit": "A"},
            "power": {"type": "Float64", "offset": 80, "dims": [], "unit": "W"},
        },
        "Sat_outputs": {
            "voltage": {"type": "Float64", "offset": 0, "dims": [], "unit": "V"},
            "pos_eci": {"type": "Float64", "offset": 8, "dims": [3], "unit": "m"},
            "count": {"type": "Int32", "offset": 32, "dims": []},
            "current": {"type": "Float64", "offset": 40, "dims": [], "unit": "mA"},
            "speed": {"type": "Float64", "offset": 48, "dims": []},
        },
        "Sat_data": {
            "mass": {"type": "Float64", "offset": 0, "dims": [], "unit": "kg"},
            "matrix": {"type": "Float32", "offset": 8, "dims": [2, 2]},
            "gains": {"type": "Int16", "offset": 24, "dims": [4]},
            "z": {"type": "ComplexF64", "offset": 32, "dims": []},
            "flags": {"type": "UInt8", "offset": 48, "dims": [2]},
            "big": {"type": "UInt64", "offset": 56, "dims": []},
        },
    }


class FakeModelLibrary:
    """In-process stand-in for a compiled model library.

    Objects are zeroed ``ctypes`` buffers; with ``boxed`` the returned handle
    points at a word holding the object address, like a boxed Rust model.
    """

    def __init__(self, *, boxed=False, metadata=None, classes=(), members=()):
        self.boxed = boxed
        self.metadata_text = metadata
        self.classes = list(classes)
        self.members = list(members)
        self.fail_create = False
        self.objects = []
        self.buffers = []
        self.closed = 0
        self.reflect_calls = 0

    def create_model(self):
        if self.fail_create:
            return None
        buffer = ctypes.create_string_buffer(OBJECT_SIZE)
        self.buffers.append(buffer)
        address = ctypes.addressof(buffer)
        self.objects.append(address)
        if self.boxed:
            box = ctypes.c_void_p(address)
            self.buffers.append(box)
            return ctypes.addressof(box)
        return address

    def reflect(self, class_cb, member_cb):
        self.reflect_calls += 1
        for name in self.classes:
            class_cb(name.encode())
        for owner, name, tag, offset in self.members:
            member_cb(owner.encode(), name.encode(), tag.encode(), offset)

    def metadata(self):
        return self.metadata_text

    def release(self):
        self.closed += 1

    def table(self) -> ModelLibraryTable:
        return ModelLibraryTable(self.create_model, self.reflect, self.metadata, release=self.release)


class FakeFramework:
    """In-process stand-in for the framework library.

    ``add_model`` moves the object into a fresh buffer and zeroes the old
    one, so a stale pointer reads back zeros.
    """

    def __init__(self):
        self.calls = []
        self.state = SchedulerState.CONFIG
        self.threads = []
        self.scheduled = []
        self.strings = {}
        self.buffers = []
        self.message = b""
        self.name = b"RealTimeScheduler"
        self.fail = set()
        self.string_status = 0
        self.closed = 0

    def _status(self, call):
        self.calls.append(call)
        if call in self.fail:
            self.message = f"{call} refused".encode()
            return 1
        return 0

    def initialize(self):
        return self._status("initialize")

    def shutdown(self):
        return self._status("shutdown")

    def new_thread(self, frequency):
        status = self._status("new_thread")
        if not status:
            self.threads.append(frequency)
        return status

    def add_model(self, thread, obj, divisor, offset):
        self.calls.append("add_model")
        if thread >= len(self.threads):
            self.message = f"Thread {thread} does not exist".encode()
            return None
        buffer = ctypes.create_string_buffer(OBJECT_SIZE)
        ctypes.memmove(buffer, obj, OBJECT_SIZE)
        ctypes.memset(obj, 0, OBJECT_SIZE)
        self.buffers.append(buffer)
        self.scheduled.append((thread, divisor, offset))
        return ctypes.addressof(buffer)

    def init_scheduler(self):
        status = self._status("init_scheduler")
        if not status:
            self.state = SchedulerState.INITIALIZED
        return status

    def step_scheduler(self, steps):
        status = self._status("step_scheduler")
        if not status:
            self.state = SchedulerState.PAUSED
        return status

    def pause_scheduler(self):
        status = self._status("pause_scheduler")
        if not status:
            self.state = SchedulerState.PAUSED
        return status

    def run_scheduler(self):
        status = self._status("run_scheduler")
        if not status:
            self.state = SchedulerState.RUNNING
        return status

    def end_scheduler(self):
        status = self._status("end_scheduler")
        if not status:
            self.state = SchedulerState.ENDED
        return status

    def get_state(self):
        return int(self.state)

    def get_scheduler_name(self):
        status = self._status("get_scheduler_name")
        if not status:
            self.message = self.name
        return status

    def get_message(self):
        return self.message

    def get_utf8(self, address):
        encoded = self.strings.get(address, "").encode("utf-8")
        if not encoded:
            return Utf8Data(None, 0)
        buffer = ctypes.create_string_buffer(encoded)
        self.buffers.append(buffer)
        return Utf8Data(ctypes.addressof(buffer), len(encoded))

    def set_utf8(self, address, data):
        if self.string_status:
            return self.string_status
        self.strings[address] = ctypes.string_at(data.pointer, data.size).decode("utf-8")
        return 0

    def release(self):
        self.closed += 1

    def table(self) -> FrameworkTable:
        return FrameworkTable(
            initialize=self.initialize,
            shutdown=self.shutdown,
            new_thread=self.new_thread,
            add_model=self.add_model,
            init_scheduler=self.init_scheduler,
            step_scheduler=self.step_scheduler,
            pause_scheduler=self.pause_scheduler,
            run_scheduler=self.run_scheduler,
            end_scheduler=self.end_scheduler,
            get_state=self.get_state,
            get_scheduler_name=self.get_scheduler_name,
            get_message=self.get_message,
            get_utf8=self.get_utf8,
            set_utf8=self.set_utf8,
            release=self.release,
        )


def _toml_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    if isinstance(value, dict):
        return "{ " + ", ".join(f"{key} = {_toml_value(item)}" for key, item in value.items()) + " }"
    raise TypeError(value)


def write_manifest(
    directory: Path,
    name: str,
    *,
    profile: str = "debug",
    language: str = "cpp",
    version: str | None = "0.1.0",
    binary: str | None = None,
    schema: dict | None = None,
    model: str | None = None,
    touch_binary: bool = True,
) -> Path:
    binary = binary or f"lib{name}.so"
    lines = ["[rsis]", f"name = {json.dumps(name)}", f"type = {json.dumps(language)}"]
    if version is not None:
        lines.append(f"version = {json.dumps(version)}")
    if model is not None:
        lines.append(f"model = {json.dumps(model)}")
    lines += ["", "[binary]", f"file = {json.dumps(binary)}"]
    for struct, fields in (schema or {}).items():
        lines += ["", f"[schema.{struct}]"]
        lines += [f"{field} = {_toml_value(tags)}" for field, tags in fields.items()]

    directory.mkdir(parents=True, exist_ok=True)
    if touch_binary:
        (directory / binary).touch()
    path = directory / manifest_filename(name, profile)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def warnings_log():
    """Collect the messages of every WARNING (or higher) record."""

    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="WARNING")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def schema():
    return sat_schema()


@pytest.fixture
def manifest_writer():
    return write_manifest


@pytest.fixture
def sat_library():
    return FakeModelLibrary()


@pytest.fixture
def framework():
    return FakeFramework()


@pytest.fixture
def registry():
    return MetadataRegistry()


@pytest.fixture
def loader(tmp_path, registry, sat_library):
    """A loader with the ``Sat`` library (cpp, embedded schema) loaded."""

    write_manifest(tmp_path / "lib", "Sat", schema=sat_schema())
    loader = LibraryLoader(
        registry, search_paths=[tmp_path / "lib"], opener=lambda path: sat_library.table()
    )
    loader.load("Sat")
    return loader


@pytest.fixture
def resolver(registry):
    return PortResolver(registry)


@pytest.fixture
def signals(resolver, loader, framework):
    return SignalAccessor(resolver, loader, framework.table())


@pytest.fixture
def connections(resolver, loader):
    return ConnectionGraph(resolver, loader)


@pytest.fixture
def library_factory():
    """Build extra fake model libraries, e.g. ``library_factory(boxed=True)``."""

    return FakeModelLibrary
