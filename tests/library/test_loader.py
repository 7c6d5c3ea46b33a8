from __future__ import annotations

import pytest

from interRSIS.errors import (
    AlreadyExistsError,
    InvalidManifestError,
    LibraryNotFoundError,
    NativeCallError,
    NotFoundError,
)
from interRSIS.Library.loader import LibraryLoader, LoadStatus
from interRSIS.Library.native import ModelLibraryTable
from interRSIS.Model.instances import ModelReference

METADATA = b"""
[rsis]
model = "M"

[schema.M]
x = { type = "Float64", offset = 0, dims = [] }
y = { type = "Int32", offset = 8, dims = [2] }
"""


def make_loader(registry, directory, libraries):
    opened = []

    def opener(path):
        opened.append(path)
        return libraries[path.name].table()

    loader = LibraryLoader(registry, search_paths=[directory], opener=opener)
    return loader, opened


def test_load_registers_the_schema(tmp_path, registry, manifest_writer, schema, sat_library):
    manifest_writer(tmp_path, "Sat", schema=schema)
    loader, opened = make_loader(registry, tmp_path, {"libSat.so": sat_library})

    result = loader.load("Sat", namespace="gnc")
    assert result.status is LoadStatus.LOADED
    assert result.profile == "debug"
    assert result.binary == (tmp_path / "libSat.so").resolve()
    assert str(result) == "Loaded Sat: debug => [gnc]"
    assert opened == [(tmp_path / "libSat.so").resolve()]
    assert registry.library("Sat").namespace == "gnc"
    assert loader.list_libraries() == ["Sat"]
    assert loader.namespaces() == {"gnc": ["Sat"]}
    assert loader.library_info("Sat")["rsis"]["name"] == "Sat"


def test_loading_twice_reports_already_loaded(tmp_path, registry, manifest_writer, schema, sat_library):
    manifest_writer(tmp_path, "Sat", schema=schema)
    loader, opened = make_loader(registry, tmp_path, {"libSat.so": sat_library})

    loader.load("Sat")
    result = loader.load("Sat")
    assert result.status is LoadStatus.ALREADY_LOADED
    assert "already loaded" in str(result)
    assert len(opened) == 1
    assert registry.libraries() == ["Sat"]


def test_profile_selection(tmp_path, manifest_writer, schema):
    manifest_writer(tmp_path, "Sat", profile="release", schema=schema)
    manifest_writer(tmp_path, "Sat", profile="debug", schema=schema)
    loader = LibraryLoader(None, search_paths=[tmp_path])

    assert loader.find("Sat").profile == "debug"
    assert loader.find("Sat", "release").profile == "release"
    assert sorted(loader.list_available()) == [
        ("Sat", "debug", tmp_path.resolve()),
        ("Sat", "release", tmp_path.resolve()),
    ]


def test_missing_library_or_profile(tmp_path, registry, manifest_writer, schema, sat_library):
    manifest_writer(tmp_path, "Sat", schema=schema)
    loader, opened = make_loader(registry, tmp_path, {"libSat.so": sat_library})

    with pytest.raises(LibraryNotFoundError, match="Other"):
        loader.load("Other")
    with pytest.raises(LibraryNotFoundError, match="release"):
        loader.load("Sat", profile="release")
    assert opened == []


def test_missing_binary(tmp_path, registry, manifest_writer, schema, sat_library):
    manifest_writer(tmp_path, "Sat", schema=schema, touch_binary=False)
    loader, opened = make_loader(registry, tmp_path, {"libSat.so": sat_library})

    with pytest.raises(LibraryNotFoundError, match="missing binary"):
        loader.load("Sat")
    assert opened == []


def test_failed_registration_closes_the_link(tmp_path, registry, manifest_writer, schema, sat_library):
    manifest_writer(tmp_path, "Sat", schema=schema, model="Nope")
    loader, _ = make_loader(registry, tmp_path, {"libSat.so": sat_library})

    with pytest.raises(InvalidManifestError, match="Nope"):
        loader.load("Sat")
    assert sat_library.closed == 1
    assert registry.libraries() == []
    assert loader.list_libraries() == []


def test_schema_from_library_metadata(tmp_path, registry, manifest_writer, library_factory):
    library = library_factory(metadata=METADATA)
    manifest_writer(tmp_path, "Meta")
    loader, _ = make_loader(registry, tmp_path, {"libMeta.so": library})

    loader.load("Meta")
    assert registry.library("Meta").toplevel == "M"
    assert [entry.name for entry in registry.struct_fields("Meta", "M")] == ["x", "y"]
    assert library.reflect_calls == 0


def test_schema_from_reflection(tmp_path, registry, manifest_writer, library_factory, warnings_log):
    library = library_factory(
        metadata=b"this = = not toml",
        classes=["Vec", "Body"],
        members=[
            ("Vec", "x", "double", 0),
            ("Body", "pos", "Vec[2]", 0),
            ("Body", "mass", "double", 48),
            ("Body", "mode", "long double", 56),
        ],
    )
    manifest_writer(tmp_path, "Refl")
    loader, _ = make_loader(registry, tmp_path, {"libRefl.so": library})

    loader.load("Refl")
    assert registry.struct_names("Refl") == ["Vec", "Body"]
    assert registry.library("Refl").toplevel == "Body"
    offset, pos = registry.library("Refl").struct("Body").lookup("pos")
    assert pos.composite and pos.dims == (2,)
    assert registry.library("Refl").struct("Body").lookup("mode")[1].type == "long double"
    assert any("invalid metadata" in message for message in warnings_log)


def test_no_schema_anywhere(tmp_path, registry, manifest_writer, library_factory):
    library = library_factory()
    manifest_writer(tmp_path, "Empty")
    loader, _ = make_loader(registry, tmp_path, {"libEmpty.so": library})

    with pytest.raises(InvalidManifestError, match="No schema available"):
        loader.load("Empty")
    assert library.closed == 1


def test_version_mismatch_warns(tmp_path, registry, manifest_writer, schema, sat_library, warnings_log):
    manifest_writer(tmp_path, "Sat", schema=schema, version="2.3.0")
    loader, _ = make_loader(registry, tmp_path, {"libSat.so": sat_library})

    assert loader.load("Sat").status is LoadStatus.LOADED
    assert any("built against framework 2.3.0" in message for message in warnings_log)


def test_search_paths(tmp_path, warnings_log):
    loader = LibraryLoader(None)
    assert loader.add_lib_path(tmp_path / "missing") is False
    assert any("does not exist" in message for message in warnings_log)
    assert loader.add_lib_path(tmp_path / "missing", force=True) is True
    assert loader.add_lib_path(tmp_path) is True
    assert loader.add_lib_path(tmp_path) is True
    assert loader.lib_paths == [(tmp_path / "missing").absolute(), tmp_path.absolute()]

    loader.clear_lib_paths()
    assert loader.lib_paths == []


def test_create_model(loader, sat_library):
    ref = loader.create_model("Sat", "sat", tags=["gnc", "power"])
    assert ref == ModelReference("sat")
    assert loader.instance(ref).obj == sat_library.objects[-1]
    assert loader.instance("sat").tags == ("gnc", "power")
    assert loader.has_model("sat")

    with pytest.raises(AlreadyExistsError, match="sat"):
        loader.create_model("Sat", "sat")
    with pytest.raises(NotFoundError, match="Other"):
        loader.create_model("Other", "other")

    sat_library.fail_create = True
    with pytest.raises(NativeCallError, match="NULL"):
        loader.create_model("Sat", "broken")
    assert loader.list_models() == ["sat"]


def test_tags_and_deletion(loader, warnings_log):
    loader.create_model("Sat", "a", tags=["gnc"])
    loader.create_model("Sat", "b", tags=["gnc", "env"])
    loader.create_model("Sat", "c")

    assert loader.list_models_by_tag("gnc") == ["a", "b"]
    assert loader.tags == {"gnc", "env"}

    assert loader.delete_model("b") is True
    assert loader.tags == {"gnc"}
    assert loader.delete_model("b") is False
    assert any("No model with name: b" in message for message in warnings_log)
    with pytest.raises(NotFoundError):
        loader.instance("b")


def test_unload_purges_models_before_closing(tmp_path, registry, manifest_writer, schema, library_factory, warnings_log):
    events = []
    sat = library_factory()
    other = library_factory()
    manifest_writer(tmp_path, "Sat", schema=schema)
    manifest_writer(tmp_path, "Other", schema=schema, model="Sat")

    loader = None

    def opener(path):
        library = sat if path.name == "libSat.so" else other
        name = "Sat" if library is sat else "Other"

        def release():
            events.append((name, sorted(loader.list_models())))

        return ModelLibraryTable(library.create_model, library.reflect, library.metadata, release=release)

    loader = LibraryLoader(registry, search_paths=[tmp_path], opener=opener)
    loader.load("Sat")
    loader.load("Other")
    loader.create_model("Sat", "s1")
    loader.create_model("Sat", "s2")
    loader.create_model("Other", "o1")

    assert loader.unload("Sat") is True
    assert loader.list_models() == ["o1"]
    assert events == [("Sat", ["o1"])]
    assert "Sat" not in registry
    assert loader.unload("Sat") is False
    assert any("not previously loaded" in message for message in warnings_log)


def test_unload_all_runs_in_reverse_order(tmp_path, registry, manifest_writer, schema, library_factory):
    closed = []
    libraries = {}
    for name in ("A", "B", "C"):
        manifest_writer(tmp_path, name, schema=schema, model="Sat")
        libraries[f"lib{name}.so"] = name

    def opener(path):
        library = library_factory()
        name = libraries[path.name]
        return ModelLibraryTable(
            library.create_model, library.reflect, library.metadata, release=lambda: closed.append(name)
        )

    loader = LibraryLoader(registry, search_paths=[tmp_path], opener=opener)
    for name in ("B", "A", "C"):
        loader.load(name)
    loader.unload_all()

    assert closed == ["C", "A", "B"]
    assert registry.libraries() == []


@pytest.mark.parametrize(
    "metadata",
    [b'schema = "oops"\n', b'schema = [1, 2]\n[rsis]\nmodel = "Body"\n', b'rsis = 3\nschema = 4\n'],
)
def test_metadata_schema_must_be_a_table(tmp_path, registry, manifest_writer, library_factory, warnings_log, metadata):
    library = library_factory(metadata=metadata, classes=["Body"], members=[("Body", "mass", "double", 0)])
    manifest_writer(tmp_path, "Body")
    loader, _ = make_loader(registry, tmp_path, {"libBody.so": library})

    loader.load("Body")
    assert library.reflect_calls == 1
    assert registry.library("Body").toplevel == "Body"
    assert any("invalid metadata" in message for message in warnings_log)


def test_metadata_rsis_section_must_be_a_table(tmp_path, registry, manifest_writer, library_factory):
    library = library_factory(metadata=b'rsis = "M"\n[schema.M]\nx = { type = "Float64", offset = 0, dims = [] }\n')
    manifest_writer(tmp_path, "Meta", model="M")
    loader, _ = make_loader(registry, tmp_path, {"libMeta.so": library})

    loader.load("Meta")
    assert registry.library("Meta").toplevel == "M"


def test_unload_drops_metadata_when_close_fails(tmp_path, registry, manifest_writer, schema, library_factory):
    library = library_factory()
    manifest_writer(tmp_path, "Sat", schema=schema)

    def release():
        raise OSError("dlclose failed")

    loader = LibraryLoader(
        registry,
        search_paths=[tmp_path],
        opener=lambda path: ModelLibraryTable(
            library.create_model, library.reflect, library.metadata, release=release
        ),
    )
    loader.load("Sat")
    loader.create_model("Sat", "sat")

    with pytest.raises(OSError, match="dlclose"):
        loader.unload("Sat")
    assert "Sat" not in registry
    assert loader.list_libraries() == []
    assert loader.list_models() == []
