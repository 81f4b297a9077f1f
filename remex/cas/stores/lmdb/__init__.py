from . shared_env import SharedEnvironment
from . lmdb_cache_store import LmdbCacheStore
__all__ = ['SharedEnvironment', 'LmdbCacheStore']
