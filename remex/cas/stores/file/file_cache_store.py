import os
import asyncio
import threading
import aiofiles
from async_lru import alru_cache
from remex.cas.object_model import *
from remex.cas.object_serialization import *
from remex.cas.cache_store import CacheStore, verify_blob

class FileCacheStore(CacheStore):
    """Stores blobs under '<store_path>/cas/<digest>' and action results under '<store_path>/ac/<digest>'.

    Every file is first written to a temporary name and then moved in place with os.replace,
    so a reader either sees the complete file or no file at all.
    """

    # to share the files between sync and async code, a reentrant lock is needed
    # the event loop, when executing coroutines, can re-enter, but other threads can't
    _thread_lock:threading.RLock
    # however, to coordinate the async coroutines, also a async lock is needed
    _async_lock:asyncio.Lock

    def __init__(self, store_path:str):
        super().__init__()
        self._thread_lock = threading.RLock()
        self._async_lock = asyncio.Lock()
        self.store_path = store_path
        self.cas_path = os.path.join(store_path, CAS_NAMESPACE)
        self.ac_path = os.path.join(store_path, AC_NAMESPACE)
        #ensure that the paths exists
        os.makedirs(self.cas_path, exist_ok=True)
        os.makedirs(self.ac_path, exist_ok=True)

    async def put(self, digest:Digest, data:bytes) -> None:
        verify_blob(digest, data)
        await self._write_once(self._to_path(self.cas_path, digest), data)

    async def get(self, digest:Digest) -> bytes | None:
        if not await self.has(digest):
            return None
        return await self._load(bytes(digest))

    async def has(self, digest:Digest) -> bool:
        return os.path.exists(self._to_path(self.cas_path, digest))

    async def put_action_result(self, action_digest:ActionDigest, result:ActionResult) -> None:
        await self._write_once(self._to_path(self.ac_path, action_digest), action_result_to_bytes(result))

    async def get_action_result(self, action_digest:ActionDigest) -> ActionResult | None:
        path = self._to_path(self.ac_path, action_digest)
        if not os.path.exists(path):
            return None
        async with aiofiles.open(path, 'rb') as f:
            data = await f.read()
        return bytes_to_action_result(data)

    @alru_cache(maxsize=1024)
    async def _load(self, digest:Digest) -> bytes:
        # only called for digests that exist, so a miss is never cached
        async with aiofiles.open(self._to_path(self.cas_path, digest), 'rb') as f:
            data = await f.read()
        return verify_blob(digest, data)

    async def _write_once(self, path:str, data:bytes) -> None:
        #check if the file already exists
        # this is safe to do outside the lock, because files are only ever moved in place complete
        if os.path.exists(path):
            return
        temp_path = f"{path}.{os.urandom(6).hex()}.tmp"
        with self._thread_lock:
            async with self._async_lock:
                if os.path.exists(path):
                    return
                #if the file is more than 100KB, write it asynchronously
                # writing small files asynchronously makes the overall system much slower
                try:
                    if len(data) > 100000:
                        async with aiofiles.open(temp_path, 'wb') as f:
                            await f.write(data)
                    else:
                        with open(temp_path, 'wb') as f:
                            f.write(data)
                    os.replace(temp_path, path)
                except BaseException:
                    if os.path.exists(temp_path):
                        os.remove(temp_path)
                    raise

    def _to_path(self, namespace_path:str, digest:Digest) -> str:
        if not is_digest(digest):
            raise ValueError(f"digest is not a properly structured Digest: type '{type(digest)}'.")
        return os.path.join(namespace_path, digest.hex())
