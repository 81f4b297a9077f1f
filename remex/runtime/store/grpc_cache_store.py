from typing import AsyncIterator, Iterable
import grpc
from remex.cas import *
from remex.cas.errors import error_from_rpc
from .base_client import BaseClient, DEFAULT_TIMEOUT_SECONDS
from .cache_api import *

import logging
logger = logging.getLogger(__name__)

class CacheClient(BaseClient):
    def __init__(self, server_address="localhost:50051", timeout_seconds:float=DEFAULT_TIMEOUT_SECONDS):
        super().__init__(server_address, timeout_seconds)

    def get_cache_stub_async(self) -> CacheStub:
        return CacheStub(self.channel_async)


class GrpcCacheStore(CacheStore):
    """A cache store that talks to a remote 'remex.Cache' service.

    Small blobs go through the batch calls, big ones are streamed in chunks.
    Every rpc error is translated into the transport independent error kinds.
    """
    def __init__(self, client:CacheClient):
        super().__init__()
        self._client = client
        self._stub = client.get_cache_stub_async()
        self._timeout = client.timeout_seconds

    @classmethod
    def from_address(cls, server_address:str, timeout_seconds:float=DEFAULT_TIMEOUT_SECONDS) -> "GrpcCacheStore":
        return cls(CacheClient(server_address, timeout_seconds))

    @property
    def client(self) -> CacheClient:
        return self._client

    @property
    def address(self) -> str:
        return self._client.server_address

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def put(self, digest:Digest, data:bytes) -> None:
        verify_blob(digest, data)
        if len(data) > MAX_BATCH_BYTES:
            await self._write(digest, data)
        else:
            await self._call(self._stub.BatchUpdateBlobs(BatchUpdateBlobsRequest({digest: data}), timeout=self._timeout))

    async def put_blobs(self, blobs:dict[Digest, bytes]) -> None:
        batch:dict[Digest, bytes] = {}
        batch_size = 0
        for digest, data in blobs.items():
            if len(data) > MAX_BATCH_BYTES:
                await self.put(digest, data)
                continue
            if batch_size + len(data) > MAX_BATCH_BYTES:
                await self._call(self._stub.BatchUpdateBlobs(BatchUpdateBlobsRequest(batch), timeout=self._timeout))
                batch, batch_size = {}, 0
            batch[digest] = verify_blob(digest, data)
            batch_size += len(data)
        if len(batch) > 0:
            await self._call(self._stub.BatchUpdateBlobs(BatchUpdateBlobsRequest(batch), timeout=self._timeout))

    async def get(self, digest:Digest) -> bytes | None:
        chunks = []
        try:
            call = self._stub.Read(ReadRequest(digest), timeout=self._timeout)
            async for response in call:
                chunks.append(response.data)
        except grpc.aio.AioRpcError as e:
            if e.code() == grpc.StatusCode.NOT_FOUND:
                return None
            raise error_from_rpc(e) from e
        return verify_blob(digest, b"".join(chunks))

    async def has(self, digest:Digest) -> bool:
        return len(await self.find_missing([digest])) == 0

    async def find_missing(self, digests:Iterable[Digest]) -> list[Digest]:
        digests = list(dict.fromkeys(digests))
        if len(digests) == 0:
            return []
        response:FindMissingBlobsResponse = await self._call(
            self._stub.FindMissingBlobs(FindMissingBlobsRequest(digests), timeout=self._timeout))
        return response.missing

    async def get_action_result(self, action_digest:ActionDigest) -> ActionResult | None:
        try:
            return await self._stub.GetActionResult(GetActionResultRequest(action_digest), timeout=self._timeout)
        except grpc.aio.AioRpcError as e:
            if e.code() == grpc.StatusCode.NOT_FOUND:
                return None
            raise error_from_rpc(e) from e

    async def put_action_result(self, action_digest:ActionDigest, result:ActionResult) -> None:
        await self._call(self._stub.UpdateActionResult(UpdateActionResultRequest(action_digest, result), timeout=self._timeout))

    async def close(self) -> None:
        await self._client.close()

    async def _write(self, digest:Digest, data:bytes):
        async def chunks() -> AsyncIterator[WriteRequest]:
            for offset in range(0, len(data), CHUNK_SIZE):
                chunk = data[offset:offset+CHUNK_SIZE]
                yield WriteRequest(digest, offset, chunk, offset + len(chunk) >= len(data))
        response:WriteResponse = await self._call(self._stub.Write(chunks(), timeout=self._timeout))
        if response.committed_size != len(data):
            raise CorruptionError(f"Wrote {len(data)} bytes of blob '{digest.hex()}', but only {response.committed_size} were committed.")

    async def _call(self, call):
        try:
            return await call
        except grpc.aio.AioRpcError as e:
            raise error_from_rpc(e) from e
