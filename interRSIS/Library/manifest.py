"""Discovery and parsing of model library manifests.

A manifest is a TOML file named ``rsis_<library>.app.<profile>.toml`` that
sits next to the compiled model library::

    [rsis]
    name = "cubesat"          # library identifier
    type = "cpp"              # implementation language tag
    version = "0.1.0"         # framework version it was built against
    model = "cubesat"         # optional top-level struct, defaults to name

    [binary]
    file = "libcubesat.so"    # relative to the manifest directory

    [schema.cubesat]          # optional embedded schema, one table per struct
    inputs = { class = "cubesat_inputs", offset = 0 }
"""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from ..errors import InvalidManifestError

PROFILES: tuple[str, ...] = ("debug", "release")
MANIFEST_PATTERN = re.compile(r"^rsis_(?P<name>.+)\.app\.(?P<profile>debug|release)\.toml$")


def manifest_filename(library: str, profile: str) -> str:
    return f"rsis_{library}.app.{profile}.toml"


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """A discovered manifest: library name, build profile and directory."""

    name: str
    profile: str
    directory: Path

    @property
    def path(self) -> Path:
        return self.directory / manifest_filename(self.name, self.profile)


@dataclass(slots=True)
class Manifest:
    """Parsed contents of one manifest file."""

    name: str
    profile: str
    language: str
    version: str
    binary: Path
    toplevel: str
    schema: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read(cls, entry: ManifestEntry) -> "Manifest":
        """Parse the manifest behind ``entry``.

        Raises:
            InvalidManifestError: Unreadable TOML or missing required keys.
        """

        path = entry.path
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise InvalidManifestError(f"Cannot parse manifest {path}: {exc}", path=str(path)) from exc
        return cls.from_dict(data, entry)

    @classmethod
    def from_dict(cls, data: dict[str, Any], entry: ManifestEntry) -> "Manifest":
        path = entry.path
        try:
            rsis = data["rsis"]
            name = str(rsis["name"])
            language = str(rsis["type"]).lower()
            binary = entry.directory / str(data["binary"]["file"])
        except (KeyError, TypeError) as exc:
            raise InvalidManifestError(
                f"Manifest {path} lacks required key {exc}", path=str(path)
            ) from exc
        schema = data.get("schema")
        if schema is not None and not isinstance(schema, dict):
            raise InvalidManifestError(f"Manifest {path} has a malformed [schema] table", path=str(path))
        return cls(
            name=name,
            profile=entry.profile,
            language=language,
            version=str(rsis.get("version", "")),
            binary=binary.resolve(),
            toplevel=str(rsis.get("model", name)),
            schema=schema,
            raw=data,
        )


def scan(directories: Iterable[Path]) -> list[ManifestEntry]:
    """Return every manifest found directly inside ``directories``.

    The file name alone identifies library and profile, so manifests are not
    opened during discovery.
    """

    entries: list[ManifestEntry] = []
    for directory in directories:
        if not directory.is_dir():
            continue
        for child in sorted(directory.iterdir()):
            match = MANIFEST_PATTERN.match(child.name)
            if match and child.is_file():
                entries.append(
                    ManifestEntry(match.group("name"), match.group("profile"), directory.resolve())
                )
    return entries


__all__ = [
    "MANIFEST_PATTERN",
    "Manifest",
    "ManifestEntry",
    "PROFILES",
    "manifest_filename",
    "scan",
]
