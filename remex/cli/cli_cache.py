import asyncio
import os
import click
from remex.cas.stores import STORE_KINDS, open_store
from remex.runtime.web.rest_cache_server import RestCacheServer

#===========================================================
# 'cache' command
#===========================================================
@click.command(context_settings={'show_default': True})
@click.option("--port", "-p", type=int, required=False, default=8080, help="Port of the REST cache.")
@click.option("--store-path", "-d", required=True, help="Where to store the data.")
@click.option("--store", type=click.Choice(STORE_KINDS), required=False, default="file", help="Kind of store backend.")
@click.option("--prefix", required=False, default=None, help="Path prefix of all routes, e.g. '/hazelcast/rest/maps'.")
def cache(port:int, store_path:str, store:str, prefix:str|None):
    """Starts a standalone REST cache, without an execution service."""
    print("-> Starting REST Cache Server")
    os.makedirs(store_path, exist_ok=True)

    async def ainit():
        cache_store = open_store(store, store_path)
        try:
            await RestCacheServer(cache_store, prefix=prefix).run(port=port)
        finally:
            await cache_store.close()

    asyncio.run(ainit())
