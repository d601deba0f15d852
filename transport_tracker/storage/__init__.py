"""Remote endpoint client and local cache."""

from .local_cache import LocalCache
from .remote_client import FetchResult, RemoteClient

__all__ = ["FetchResult", "LocalCache", "RemoteClient"]
