"""Source generation for C++ and Rust model interfaces."""

from .generator import (
    FieldDefinition,
    InterfaceGenerator,
    StructDefinition,
    generate_interface,
    load_schema,
)

__all__ = [
    "FieldDefinition",
    "InterfaceGenerator",
    "StructDefinition",
    "generate_interface",
    "load_schema",
]
