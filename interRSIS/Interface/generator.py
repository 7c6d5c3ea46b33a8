"""Generate C++ and Rust model interfaces from a YAML schema.

The schema names a top-level ``model`` and describes every struct as a table
of fields. A field is either a composite (``class``, ``dims``, ``desc``) or a
leaf (``type``, ``dims``, ``unit``, ``value``, ``desc``)::

    model: Sat
    Sat:
      inputs: {class: Sat_inputs, desc: "commanded values"}
      mass: {type: Float64, unit: kg, value: 4.0}
    Sat_inputs:
      voltage: {type: Float64, dims: [], unit: V}
      position: {type: Float64, dims: [3], unit: m}

A schema holding only the model's own fields may list them under ``fields``
instead of repeating the model name.

Structs are emitted dependencies first, so no definition refers forward. The
generated code also exports ``create_model``, ``reflect`` and ``metadata``,
matching :class:`interRSIS.Library.native.ModelLibraryTable`.
"""

from __future__ import annotations

import argparse
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..errors import InterfaceError, NotFoundError, TypeMismatchError, UnsupportedTypeError
from ..Log import Log
from ..Model.ports import Port
from ..types import LANGUAGES, PrimitiveType, format_type_tag, primitive

if TYPE_CHECKING:
    from loguru import Logger

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

# language -> (output suffix, template name) pairs
OUTPUTS: dict[str, tuple[tuple[str, str], ...]] = {
    "cpp": (
        ("_interface.hxx", "header_cpp.hxx.j2"),
        ("_interface.cxx", "source_cpp.cxx.j2"),
    ),
    "rust": (("_interface.rs", "rust.rs.j2"),),
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

CPP_KEYWORDS = frozenset(
    """
    alignas alignof and and_eq asm auto bitand bitor bool break case catch char char8_t
    char16_t char32_t class compl concept const const_cast consteval constexpr constinit
    continue co_await co_return co_yield decltype default delete do double dynamic_cast
    else enum explicit export extern false float for friend goto if inline int long
    mutable namespace new noexcept not not_eq nullptr operator or or_eq private
    protected public register reinterpret_cast requires return short signed sizeof
    static static_assert static_cast struct switch template this thread_local throw
    true try typedef typeid typename union unsigned using virtual void volatile wchar_t
    while xor xor_eq
    """.split()
)

RUST_KEYWORDS = frozenset(
    """
    as async await break const continue crate dyn else enum extern false fn for if impl
    in let loop match mod move mut pub ref return self Self static struct super trait
    true type unsafe use where while abstract become box do final gen macro override
    priv try typeof unsized virtual yield
    """.split()
)

# generated names must compile in every target language
_RESERVED = (("C++", CPP_KEYWORDS), ("Rust", RUST_KEYWORDS))


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    """One validated field; leaf defaults are already normalised."""

    name: str
    port: Port

    @property
    def value(self) -> Any:
        return self.port.default


@dataclass(frozen=True, slots=True)
class StructDefinition:
    name: str
    fields: tuple[FieldDefinition, ...]


def _check_identifier(name: Any, what: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise InterfaceError(f"Invalid {what} name {name!r}", name=name)
    reserved = [language for language, words in _RESERVED if name in words]
    if reserved:
        raise InterfaceError(
            f"Invalid {what} name {name!r}: reserved in {', '.join(reserved)}", name=name
        )
    return name


def _dims(raw: Any, where: str) -> tuple[int, ...]:
    if not isinstance(raw, (list, tuple)):
        raise InterfaceError(f"Dimension specified for {where} is not a list", field=where, dims=raw)
    if any(isinstance(d, bool) or not isinstance(d, int) or d <= 0 for d in raw):
        raise InterfaceError(
            f"Dimension {list(raw)} of {where} must hold positive integers", field=where, dims=raw
        )
    return tuple(raw)


def _single_line(text: Any) -> str:
    return " ".join(str(text or "").split())


def _broadcast(value: Any, dims: tuple[int, ...]) -> Any:
    if not dims or isinstance(value, (list, tuple)):
        return value
    for extent in reversed(dims):
        value = [value] * extent
    return value


def _normalise(row: PrimitiveType, value: Any, where: str) -> Any:
    """Widen YAML scalars to the port's element kind (ints to floats and so on)."""

    if isinstance(value, (list, tuple)):
        return [_normalise(row, item, where) for item in value]
    kind = row.dtype.kind if row.dtype is not None else "U"
    if kind in "fc" and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if kind == "c":
        if isinstance(value, str):
            try:
                return complex(value.replace(" ", ""))
            except ValueError as exc:
                raise InterfaceError(
                    f"Value {value!r} of {where} is not a complex number", field=where
                ) from exc
        if isinstance(value, float):
            return complex(value)
    return value


# ---- literal formatting ---------------------------------------------------
def _quote(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _cpp_float(value: float, ctype: str) -> str:
    if math.isnan(value):
        return f"std::numeric_limits<{ctype}>::quiet_NaN()"
    if math.isinf(value):
        sign = "-" if value < 0 else ""
        return f"{sign}std::numeric_limits<{ctype}>::infinity()"
    text = repr(float(value))
    return f"{text}f" if ctype == "float" else text


def _rust_float(value: float, rtype: str) -> str:
    if math.isnan(value):
        return f"{rtype}::NAN"
    if math.isinf(value):
        return f"{rtype}::{'NEG_INFINITY' if value < 0 else 'INFINITY'}"
    return repr(float(value))


def _cpp_scalar(row: PrimitiveType, value: Any) -> str:
    if row.is_string:
        return _quote(value)
    kind = row.dtype.kind
    if kind == "b":
        return "true" if value else "false"
    if kind == "u":
        return f"{int(value)}u"
    if kind == "i":
        if row.name == "Int64" and int(value) == -(2**63):
            return "INT64_MIN"
        return str(int(value))
    if kind == "f":
        return _cpp_float(value, row.cpp)
    part = "float" if row.name == "ComplexF32" else "double"
    return f"{{{_cpp_float(value.real, part)}, {_cpp_float(value.imag, part)}}}"


def _rust_scalar(row: PrimitiveType, value: Any) -> str:
    if row.is_string:
        return f"String::from({_quote(value)})" if value else "String::new()"
    kind = row.dtype.kind
    if kind == "b":
        return "true" if value else "false"
    if kind in "iu":
        return str(int(value))
    if kind == "f":
        return _rust_float(value, row.rust)
    part = "f32" if row.name == "ComplexF32" else "f64"
    return f"{row.rust}::new({_rust_float(value.real, part)}, {_rust_float(value.imag, part)})"


def _nested(value: Any, scalar: Callable[[Any], str], brackets: str) -> str:
    if isinstance(value, list):
        inner = ", ".join(_nested(item, scalar, brackets) for item in value)
        return f"{brackets[0]}{inner}{brackets[1]}"
    return scalar(value)


def _comment(port: Port) -> str:
    parts = [f"[{port.unit}]"] if port.unit else []
    if port.note:
        parts.append(port.note)
    return f" // {' '.join(parts)}" if parts else ""


def _cpp_field(field: FieldDefinition) -> dict[str, str]:
    port = field.port
    extents = "".join(f"[{d}]" for d in port.dims)
    if port.composite:
        declaration = f"{port.type} {field.name}{extents};"
        tag = format_type_tag(port.type, port.dims)
    else:
        row = primitive(port.type)
        literal = _nested(field.value, lambda v: _cpp_scalar(row, v), "{}")
        declaration = f"{row.cpp} {field.name}{extents} = {literal};"
        tag = format_type_tag(row.cpp, port.dims)
    return {"name": field.name, "declaration": declaration + _comment(port), "tag": tag}


def _rust_field(field: FieldDefinition) -> dict[str, str]:
    port = field.port
    if port.composite:
        base = port.type
        init = f"{port.type}::default()"
        for _ in port.dims:
            init = f"core::array::from_fn(|_| {init})"
        tag = format_type_tag(port.type, port.dims)
    else:
        row = primitive(port.type)
        base = row.rust
        init = _nested(field.value, lambda v: _rust_scalar(row, v), "[]")
        tag = format_type_tag(row.rust, port.dims)
    rtype = base
    for extent in reversed(port.dims):
        rtype = f"[{rtype}; {extent}]"
    return {
        "name": field.name,
        "declaration": f"pub {field.name}: {rtype},{_comment(port)}",
        "init": init,
        "tag": tag,
    }


_FIELD_RENDERERS: dict[str, Callable[[FieldDefinition], dict[str, str]]] = {
    "cpp": _cpp_field,
    "rust": _rust_field,
}


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


class InterfaceGenerator:
    """Validate an interface schema and render it for the target languages.

    Every struct reachable from the model is resolved and validated on
    construction, so a bad schema fails before anything is rendered.

    Attributes:
        model (str): Top-level struct name.
        structs (tuple[StructDefinition, ...]): Structs in emission order,
            dependencies first and the model last.
        source (str): Name of the schema document, quoted in file banners.

    Raises:
        NotFoundError: A composite field names an undefined struct.
        InterfaceError: Malformed schema, cyclic references, invalid
            dimensions, types or values.
    """

    def __init__(
        self,
        schema: Mapping[str, Any],
        *,
        source: str = "",
        logger: "Logger | None" = None,
    ) -> None:
        self._logger = logger or Log().logger
        if not isinstance(schema, Mapping):
            raise InterfaceError("Interface schema must be a mapping")
        if "model" not in schema:
            raise InterfaceError("The `model` element was not found. Aborting")
        self.model = _check_identifier(schema["model"], "model")
        self.source = source
        self._tables = self._struct_tables(schema, self.model)
        self.structs = self._resolve()

        unused = [
            name
            for name, table in self._tables.items()
            if isinstance(table, Mapping) and name not in self.order
        ]
        if unused:
            self._logger.warning(f"Structs never referenced from {self.model}: {unused}")

    @property
    def order(self) -> list[str]:
        return [struct.name for struct in self.structs]

    @staticmethod
    def _struct_tables(schema: Mapping[str, Any], model: str) -> dict[str, Any]:
        tables = {name: table for name, table in schema.items() if name != "model"}
        if model not in tables and isinstance(tables.get("fields"), Mapping):
            tables[model] = tables.pop("fields")
        return tables

    def _resolve(self) -> tuple[StructDefinition, ...]:
        definitions: dict[str, StructDefinition] = {}
        active: list[str] = []

        def visit(name: str, referrer: str | None) -> None:
            if name in definitions:
                return
            if name in active:
                cycle = " -> ".join([*active[active.index(name):], name])
                raise InterfaceError(f"Recursive struct reference: {cycle}", struct=name)
            if name not in self._tables:
                origin = f" (referenced by {referrer})" if referrer else ""
                raise NotFoundError(f"Class definition: {name} not found{origin}", struct=name)
            table = self._tables[name]
            if not isinstance(table, Mapping):
                raise InterfaceError(f"Struct {name} must be a mapping of fields", struct=name)
            _check_identifier(name, "struct")

            active.append(name)
            fields = []
            for field_name, entry in table.items():
                definition = self._field(name, field_name, entry)
                if definition.port.composite:
                    visit(definition.port.type, name)
                fields.append(definition)
            active.pop()
            definitions[name] = StructDefinition(name, tuple(fields))

        visit(self.model, None)
        return tuple(definitions.values())

    @staticmethod
    def _field(struct: str, name: Any, entry: Any) -> FieldDefinition:
        where = f"{struct}.{name}"
        _check_identifier(name, "field")
        if not isinstance(entry, Mapping):
            raise InterfaceError(
                f"Field {where} must be a mapping, got {type(entry).__name__}", field=where
            )
        if "class" in entry and "type" in entry:
            raise InterfaceError(f"Field {where} declares both `class` and `type`", field=where)
        dims = _dims(entry.get("dims", []), where)
        note = _single_line(entry.get("desc", ""))

        if "class" in entry:
            target = _check_identifier(entry["class"], "class")
            return FieldDefinition(name, Port(target, dims, note=note, composite=True))
        if "type" not in entry:
            raise InterfaceError(f"Field {where} needs either a `class` or a `type` entry", field=where)

        try:
            row = primitive(str(entry["type"]))
        except UnsupportedTypeError as exc:
            raise InterfaceError(f"Field {where}: {exc}", field=where, type=entry["type"]) from exc
        value = entry.get("value")
        if value is None:
            value = row.default
        value = _normalise(row, _broadcast(value, dims), where)
        try:
            port = Port(row.name, dims, unit=_single_line(entry.get("unit")), note=note, default=value)
        except (TypeMismatchError, UnsupportedTypeError, ValueError) as exc:
            raise InterfaceError(f"Field {where} has an invalid value: {exc}", field=where) from exc
        return FieldDefinition(name, port)

    # ---- rendering ------------------------------------------------------------
    def context(self, language: str, basename: str | None = None) -> dict[str, Any]:
        """Return the template variables for ``language``."""

        if language not in OUTPUTS:
            raise InterfaceError(
                f"Unknown language '{language}'; {list(LANGUAGES)} are the only valid options",
                language=language,
            )
        stem = basename or self.model
        render_field = _FIELD_RENDERERS[language]
        structs = [
            {"name": struct.name, "fields": [render_field(field) for field in struct.fields]}
            for struct in self.structs
        ]
        complex_types = sorted(
            {
                primitive(field.port.type).rust
                for struct in self.structs
                for field in struct.fields
                if not field.port.composite and field.port.type.startswith("Complex")
            }
        )
        origin = f" from {self.source}" if self.source else ""
        return {
            "banner": f"Generated by interRSIS{origin}. Do not edit.",
            "model": self.model,
            "structs": structs,
            "header_guard": f"{stem.upper()}_INTERFACE_HXX",
            "header_file": f"{stem}_interface.hxx",
            "complex_import": (
                f"use num_complex::{{{', '.join(complex_types)}}};" if complex_types else ""
            ),
        }

    def render(self, language: str = "cpp", basename: str | None = None) -> dict[str, str]:
        """Render ``language`` and return ``{file name: source text}``."""

        variables = self.context(language, basename)
        stem = basename or self.model
        env = _environment()
        return {
            f"{stem}{suffix}": env.get_template(template).render(**variables)
            for suffix, template in OUTPUTS[language]
        }

    def write(
        self,
        output_dir: str | Path,
        languages: str | Sequence[str] = "cpp",
        basename: str | None = None,
    ) -> list[Path]:
        """Render every language first, then write all files to ``output_dir``."""

        if isinstance(languages, str):
            languages = [languages]
        rendered: dict[str, str] = {}
        for language in languages:
            rendered.update(self.render(language, basename))

        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for filename, text in rendered.items():
            path = directory / filename
            path.write_text(text, encoding="utf-8")
            self._logger.info(f"Generated: {path}")
            written.append(path)
        return written


def load_schema(path: str | Path) -> dict[str, Any]:
    """Read a YAML interface file."""

    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise InterfaceError(f"Cannot parse interface file {path}: {exc}", path=str(path)) from exc
    if not isinstance(data, dict):
        raise InterfaceError(f"Interface file {path} does not hold a mapping", path=str(path))
    return data


def generate_interface(
    path: str | Path,
    language: str | Sequence[str] = "cpp",
    output_dir: str | Path | None = None,
    *,
    logger: "Logger | None" = None,
) -> list[Path]:
    """Generate the model interface described by the YAML file at ``path``.

    Files land next to the interface file unless ``output_dir`` is given.

    Args:
        path: YAML interface file.
        language: ``"cpp"``, ``"rust"`` or a sequence of both.
        output_dir: Optional destination directory.
        logger: Optional loguru logger.

    Returns:
        Paths of the generated files.
    """

    path = Path(path)
    log = logger or Log().logger
    generator = InterfaceGenerator(load_schema(path), source=path.name, logger=log)
    written = generator.write(output_dir if output_dir is not None else path.parent, language)
    log.info("Generation complete")
    return written


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser for the generator.

    Returns:
        Configured :class:`argparse.ArgumentParser` instance.
    """

    parser = argparse.ArgumentParser(
        description="Generate RSIS model interfaces from a YAML schema"
    )
    parser.add_argument("interface", help="Path to the YAML interface file")
    parser.add_argument(
        "--language",
        "-l",
        action="append",
        choices=LANGUAGES,
        help="Target language; repeat for several (default: cpp)",
    )
    parser.add_argument(
        "--output-dir",
        help="Directory receiving the generated files (default: next to the interface file)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Optional argument list for testing purposes.

    Returns:
        Exit status code.
    """

    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    generate_interface(
        Path(args.interface),
        args.language or ["cpp"],
        Path(args.output_dir) if args.output_dir else None,
    )
    return 0


__all__ = [
    "FieldDefinition",
    "InterfaceGenerator",
    "StructDefinition",
    "build_parser",
    "generate_interface",
    "load_schema",
    "main",
]


if __name__ == "__main__":
    raise SystemExit(main())
