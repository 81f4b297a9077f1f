import logging
import lmdb
from remex.cas.object_model import *
from remex.cas.object_serialization import *
from remex.cas.cache_store import CacheStore, verify_blob
from .shared_env import SharedEnvironment

logger = logging.getLogger(__name__)

class LmdbCacheStore(CacheStore):
    """Cache store backed by two named LMDB databases, 'cas' for blobs and 'ac' for action results.

    LMDB is synchronous, but its transactions are short enough to run them directly on the event loop.
    Puts use overwrite=False, so racing writers of the same digest converge on the first stored value.
    """
    def __init__(self, shared_env:SharedEnvironment):
        super().__init__()
        if(not isinstance(shared_env, SharedEnvironment)):
            raise Exception(f"shared_env must be of type SharedEnvironment, not '{type(shared_env)}'.")
        self._shared_env = shared_env

    @classmethod
    def from_path(cls, store_path:str, writemap:bool=False) -> "LmdbCacheStore":
        return cls(SharedEnvironment(store_path, writemap=writemap))

    async def put(self, digest:Digest, data:bytes) -> None:
        verify_blob(digest, data)
        self._put(self._shared_env.begin_cas_txn, digest, data)

    async def get(self, digest:Digest) -> bytes | None:
        if(not is_digest(digest)):
            raise ValueError(f"digest must be of type Digest, not '{type(digest)}'.")
        with self._shared_env.begin_cas_txn(write=False) as txn:
            data = txn.get(bytes(digest), default=None)
        if data is None:
            return None
        return verify_blob(digest, data)

    async def has(self, digest:Digest) -> bool:
        with self._shared_env.begin_cas_txn(write=False) as txn:
            cursor = txn.cursor()
            return cursor.set_key(bytes(digest))

    async def put_action_result(self, action_digest:ActionDigest, result:ActionResult) -> None:
        self._put(self._shared_env.begin_ac_txn, action_digest, action_result_to_bytes(result))

    async def get_action_result(self, action_digest:ActionDigest) -> ActionResult | None:
        with self._shared_env.begin_ac_txn(write=False) as txn:
            data = txn.get(bytes(action_digest), default=None)
        if data is None:
            return None
        return bytes_to_action_result(data)

    async def close(self) -> None:
        self._shared_env.close()

    def _put(self, begin_txn, key:bytes, data:bytes):
        try:
            with begin_txn() as txn:
                txn.put(bytes(key), data, overwrite=False)
        except lmdb.MapFullError:
            logger.warning(f"===> Resizing LMDB map... (key: {key.hex()}) <===")
            self._shared_env.resize()
            #try again
            with begin_txn() as txn:
                txn.put(bytes(key), data, overwrite=False)
