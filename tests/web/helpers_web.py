import httpx
from starlette.testclient import TestClient
from remex.cas import *
from remex.cas.stores.memory import MemoryCacheStore
from remex.runtime.web.rest_cache_server import RestCacheServer
from remex.runtime.web.rest_cache_store import RestCacheStore

PREFIX = "/hazelcast/rest/maps"

def setup_server(prefix:str|None=None) -> tuple[MemoryCacheStore, TestClient]:
    store = MemoryCacheStore()
    client = TestClient(RestCacheServer(store, prefix=prefix).app())
    return store, client

def setup_rest_store(prefix:str|None=PREFIX) -> tuple[MemoryCacheStore, RestCacheStore]:
    """A RestCacheStore that talks to an in-process server through the ASGI transport."""
    store = MemoryCacheStore()
    app = RestCacheServer(store, prefix=prefix).app()
    rest_store = RestCacheStore(
        f"http://testserver{prefix or ''}",
        transport=httpx.ASGITransport(app=app))
    return store, rest_store

def cas_url(digest:Digest, prefix:str|None=None) -> str:
    return f"{prefix or ''}/{CAS_NAMESPACE}/{digest.hex()}"

def ac_url(digest:Digest, prefix:str|None=None) -> str:
    return f"{prefix or ''}/{AC_NAMESPACE}/{digest.hex()}"
