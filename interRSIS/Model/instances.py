"""Model instances, the stable handles users hold, and port locations."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ModelReference:
    """Name-based handle to a model; survives native pointer relocation."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(slots=True)
class ModelInstance:
    """A live native model object created from a loaded library.

    ``obj`` is owned by the host but may be replaced by the scheduler when
    it relocates the object; see :meth:`relocate`.
    """

    library: str
    name: str
    tags: tuple[str, ...]
    obj: int

    @property
    def reference(self) -> ModelReference:
        return ModelReference(self.name)

    def relocate(self, new_obj: int) -> int:
        """Swap in the relocated object pointer and return the stale one.

        The returned value must not be dereferenced.
        """

        if not new_obj:
            raise ValueError(f"Model {self.name} cannot be relocated to a null pointer")
        old, self.obj = self.obj, int(new_obj)
        return old


@dataclass(frozen=True, slots=True)
class Location:
    """One port instance: a model plus a dotted path inside it."""

    model: ModelReference
    port: str

    def __str__(self) -> str:
        return f"{self.model.name}.{self.port}"


def as_reference(model: ModelReference | str) -> ModelReference:
    if isinstance(model, ModelReference):
        return model
    if isinstance(model, str):
        return ModelReference(model)
    raise TypeError(f"Expected ModelReference or str, got {type(model).__name__}")


__all__ = ["Location", "ModelInstance", "ModelReference", "as_reference"]
