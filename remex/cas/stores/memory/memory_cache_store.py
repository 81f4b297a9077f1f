from remex.cas.object_model import *
from remex.cas.object_serialization import *
from remex.cas.cache_store import CacheStore, verify_blob

class MemoryCacheStore(CacheStore):
    #no locking needed here, because all the dict operations used here are atomic
    _blobs:dict[Digest, bytes]
    _action_results:dict[ActionDigest, bytes]

    def __init__(self):
        super().__init__()
        self._blobs = {}
        self._action_results = {}

    async def put(self, digest:Digest, data:bytes) -> None:
        verify_blob(digest, data)
        self._blobs.setdefault(bytes(digest), bytes(data))

    async def get(self, digest:Digest) -> bytes | None:
        data = self._blobs.get(bytes(digest))
        if data is None:
            return None
        return verify_blob(digest, data)

    async def has(self, digest:Digest) -> bool:
        return bytes(digest) in self._blobs

    async def put_action_result(self, action_digest:ActionDigest, result:ActionResult) -> None:
        self._action_results.setdefault(bytes(action_digest), action_result_to_bytes(result))

    async def get_action_result(self, action_digest:ActionDigest) -> ActionResult | None:
        data = self._action_results.get(bytes(action_digest))
        if data is None:
            return None
        return bytes_to_action_result(data)

    def blob_count(self) -> int:
        return len(self._blobs)
