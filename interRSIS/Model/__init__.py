"""Schema trees, port resolution, signal access and connections."""

from .connections import ConnectionGraph
from .instances import Location, ModelInstance, ModelReference
from .ports import ClassData, LibraryData, Port, PortDirection, StructField
from .registry import MetadataRegistry
from .resolver import PortResolver, ResolvedPort
from .signals import SignalAccessor

__all__ = [
    "ClassData",
    "ConnectionGraph",
    "LibraryData",
    "Location",
    "MetadataRegistry",
    "ModelInstance",
    "ModelReference",
    "Port",
    "PortDirection",
    "PortResolver",
    "ResolvedPort",
    "SignalAccessor",
    "StructField",
]
