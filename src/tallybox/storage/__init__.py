from tallybox.storage.backend import ContestStorage
from tallybox.storage.local import LocalStorage, iter_bytes

__all__ = ["ContestStorage", "LocalStorage", "iter_bytes"]
