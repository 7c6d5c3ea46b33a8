"""Directed, type-checked links from model outputs to model inputs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Union

from ..errors import TypeMismatchError
from ..Log import Log
from ..types import canonical_name
from .instances import Location, ModelInstance, ModelReference, as_reference
from .resolver import PortResolver

if TYPE_CHECKING:
    from loguru import Logger

OUTPUTS = "outputs"
INPUTS = "inputs"

Endpoint = Union[Location, tuple[Union[ModelReference, str], str]]


class ModelTable(Protocol):
    def instance(self, model: ModelReference | str) -> ModelInstance: ...

    def has_model(self, name: str) -> bool: ...


def _location(endpoint: Endpoint, namespace: str) -> Location:
    """Place a user endpoint under the ``outputs.``/``inputs.`` namespace."""

    if isinstance(endpoint, Location):
        model, port = endpoint.model, endpoint.port
    else:
        model, port = endpoint
    return Location(as_reference(model), f"{namespace}.{port}")


class ConnectionGraph:
    """Store inbound links per destination model.

    Each destination port has at most one source; registering a new source
    for the same port replaces the previous one. Links are not removed when
    a model disappears: they become dangling until removed explicitly.
    """

    def __init__(
        self,
        resolver: PortResolver,
        models: ModelTable,
        logger: "Logger | None" = None,
    ) -> None:
        self._resolver = resolver
        self._models = models
        self._links: dict[ModelReference, dict[str, Location]] = {}
        self._logger = logger or Log().logger

    def connect(self, output: Endpoint, input: Endpoint) -> tuple[Location, Location]:
        """Link ``output`` (under ``outputs.``) to ``input`` (under ``inputs.``).

        Ports are given without the namespace prefix, e.g.
        ``connect((env, "pos_eci"), (sat, "position"))``.

        Raises:
            TypeMismatchError: Element type, dimension or declared units differ.
        """

        source = _location(output, OUTPUTS)
        destination = _location(input, INPUTS)
        oport = self._resolver.describe(self._models.instance(source.model), source.port)
        iport = self._resolver.describe(self._models.instance(destination.model), destination.port)

        if canonical_name(oport.type) != canonical_name(iport.type):
            raise TypeMismatchError(
                f"Output port type: {oport.type} ({source}) does not match input port type: "
                f"{iport.type} ({destination})",
                expected=iport.type,
                actual=oport.type,
            )
        if oport.dims != iport.dims:
            raise TypeMismatchError(
                f"Output port dimension: {oport.dims} ({source}) does not match input port "
                f"dimension: {iport.dims} ({destination})",
                expected=iport.dims,
                actual=oport.dims,
            )
        # units only block a link when both sides declare them
        if oport.unit and iport.unit and oport.unit != iport.unit:
            raise TypeMismatchError(
                f"Output port units: {oport.unit} ({source}) does not match input port units: "
                f"{iport.unit} ({destination})",
                expected=iport.unit,
                actual=oport.unit,
            )

        inbound = self._links.setdefault(destination.model, {})
        if destination.port in inbound:
            self._logger.warning(
                f"Redefining input connection {destination}: {inbound[destination.port]} -> {source}"
            )
        inbound[destination.port] = source
        return source, destination

    def disconnect(self, input: Endpoint) -> bool:
        """Remove the link feeding ``input``; returns whether one existed."""

        destination = _location(input, INPUTS)
        inbound = self._links.get(destination.model, {})
        if inbound.pop(destination.port, None) is None:
            self._logger.warning(f"No connection registered for {destination}")
            return False
        if not inbound:
            self._links.pop(destination.model, None)
        return True

    def remove_model(self, model: ModelReference | str) -> int:
        """Drop every link into or out of ``model``; returns how many went."""

        ref = as_reference(model)
        removed = len(self._links.pop(ref, {}))
        for destination in list(self._links):
            inbound = self._links[destination]
            stale = [port for port, source in inbound.items() if source.model == ref]
            for port in stale:
                del inbound[port]
            removed += len(stale)
            if not inbound:
                del self._links[destination]
        return removed

    def list_connections(self, model: ModelReference | str | None = None) -> list[tuple[Location, Location]]:
        """Return ``(source, destination)`` pairs, optionally for one destination model."""

        if model is not None:
            ref = as_reference(model)
            return [
                (source, Location(ref, port)) for port, source in self._links.get(ref, {}).items()
            ]
        return [
            (source, Location(ref, port))
            for ref, inbound in self._links.items()
            for port, source in inbound.items()
        ]

    def dangling(self) -> list[tuple[Location, Location]]:
        """Return links where either end names a model that no longer exists."""

        return [
            (source, destination)
            for source, destination in self.list_connections()
            if not (
                self._models.has_model(source.model.name)
                and self._models.has_model(destination.model.name)
            )
        ]


__all__ = ["ConnectionGraph", "Endpoint", "INPUTS", "OUTPUTS"]
