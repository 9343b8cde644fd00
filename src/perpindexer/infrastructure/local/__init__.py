from .persistence import LocalStatePersistence
from .state_store import LocalState, LocalStateStore, LocalStoreSession

__all__ = ["LocalStatePersistence", "LocalState", "LocalStateStore", "LocalStoreSession"]
