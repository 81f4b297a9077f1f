from remex.cas.cache_store import CacheStore

STORE_KINDS = ["file", "lmdb", "memory"]

def open_store(kind:str, store_path:str|None=None) -> CacheStore:
    """Creates a cache store backend by name."""
    if kind == "memory":
        from .memory import MemoryCacheStore
        return MemoryCacheStore()
    if store_path is None:
        raise ValueError(f"A store path is required for a '{kind}' store.")
    if kind == "file":
        from .file import FileCacheStore
        return FileCacheStore(store_path)
    if kind == "lmdb":
        from .lmdb import LmdbCacheStore
        return LmdbCacheStore.from_path(store_path, writemap=True)
    raise ValueError(f"Unknown store kind '{kind}', expected one of {STORE_KINDS}.")
