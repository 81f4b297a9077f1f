from . file_cache_store import FileCacheStore
__all__ = ['FileCacheStore']
