"""Native library discovery, linking, reflection and scheduling."""

from importlib import import_module

__all__ = [
    "loader",
    "manifest",
    "native",
    "reflection",
    "scheduler",
]


_LAZY_MODULES = set(__all__)


def __getattr__(name: str):
    if name in _LAZY_MODULES:
        module = import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(name)
