from .store import PersistentStore

__all__ = ["PersistentStore"]
