from abc import ABC, abstractmethod
from typing import Iterable
from remex.cas.object_model import *
from remex.cas.object_serialization import *
from remex.cas.errors import CorruptionError

class BlobLoader(ABC):
    """Interface for loading blobs from a content-addressable store."""
    @abstractmethod
    async def get(self, digest:Digest) -> bytes | None:
        pass

    async def has(self, digest:Digest) -> bool:
        return await self.get(digest) is not None


class CacheStore(BlobLoader, ABC):
    """Interface of the cache, shared by every backend and every transport adapter.

    Blobs are keyed by the sha256 of their content, action results by the digest of the action
    they were produced by. Content returned by `get` always hashes to the requested digest, and
    `put_action_result` never replaces an existing result.
    """
    @abstractmethod
    async def put(self, digest:Digest, data:bytes) -> None:
        pass

    @abstractmethod
    async def get_action_result(self, action_digest:ActionDigest) -> ActionResult | None:
        pass

    @abstractmethod
    async def put_action_result(self, action_digest:ActionDigest, result:ActionResult) -> None:
        pass

    async def find_missing(self, digests:Iterable[Digest]) -> list[Digest]:
        missing = []
        for digest in dict.fromkeys(digests):
            if not await self.has(digest):
                missing.append(digest)
        return missing

    async def put_blob(self, data:bytes) -> Digest:
        digest = get_digest(data)
        await self.put(digest, data)
        return digest

    async def put_blobs(self, blobs:dict[Digest, bytes]) -> None:
        for digest, data in blobs.items():
            await self.put(digest, data)

    async def close(self) -> None:
        pass


def verify_blob(digest:Digest, data:bytes) -> bytes:
    """Raises a CorruptionError if the data does not hash to the digest."""
    if not is_digest(digest):
        raise ValueError(f"digest is not a properly structured Digest: type '{type(digest)}'.")
    actual = get_digest(data)
    if not is_digest_match(actual, digest):
        raise CorruptionError(f"Content of blob '{digest.hex()}' hashes to '{actual.hex()}'.")
    return data
