"""
Document store factory.

Usage:
    from mindgarden.storage.backends import make_backend
    store = make_backend("sqlite", path="./data/mindgarden.db")

Adding a new backend:
    1. Create mindgarden/storage/backends/<name>.py implementing DocumentStore.
    2. Add an entry to _REGISTRY below.
    3. Set  storage.backend: <name>  in config.yaml.
    No other changes required.
"""

from .base import SERVER_TIMESTAMP, DocumentStore, Increment

_REGISTRY: dict[str, type[DocumentStore]] = {}


def _register():
    """Lazy-import backends to avoid import-time side effects."""
    if _REGISTRY:
        return
    from .memory import MemoryDocumentStore
    from .sqlite import SQLiteDocumentStore
    _REGISTRY["memory"] = MemoryDocumentStore
    _REGISTRY["sqlite"] = SQLiteDocumentStore


def make_backend(backend_type: str, **kwargs) -> DocumentStore:
    """
    Instantiate a document store by name.

    Args:
        backend_type: Registry key ("sqlite" or "memory").
        **kwargs:     Passed directly to the backend constructor.

    Raises:
        ValueError: If the backend type is not registered.
    """
    _register()
    cls = _REGISTRY.get(backend_type)
    if cls is None:
        available = ", ".join(sorted(_REGISTRY))
        raise ValueError(
            f"Unknown document store backend: '{backend_type}'. "
            f"Available: {available}"
        )
    return cls(**kwargs)


__all__ = ["DocumentStore", "Increment", "SERVER_TIMESTAMP", "make_backend"]
