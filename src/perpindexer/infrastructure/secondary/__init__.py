from .rest_store import RestSecondaryStore

__all__ = ["RestSecondaryStore"]
