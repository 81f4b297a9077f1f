from . memory_cache_store import MemoryCacheStore
__all__ = ['MemoryCacheStore']
