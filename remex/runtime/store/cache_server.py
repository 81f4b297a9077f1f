import asyncio
from concurrent import futures
import logging
import grpc
from grpc import Server
from google.protobuf import empty_pb2 as google_dot_protobuf_dot_empty__pb2
from remex.cas import *
from remex.cas.errors import abort_rpc
from remex.cas.stores.lmdb import LmdbCacheStore
from .cache_api import *

logger = logging.getLogger(__name__)

class CacheService(CacheServicer):
    """gRPC front of a cache store. Only translates between messages and store calls."""

    def __init__(self, store:CacheStore) -> None:
        super().__init__()
        self._store = store

    async def FindMissingBlobs(self, request:FindMissingBlobsRequest, context) -> FindMissingBlobsResponse:
        return FindMissingBlobsResponse(await self._store.find_missing(request.digests))

    async def BatchUpdateBlobs(self, request:BatchUpdateBlobsRequest, context):
        try:
            for digest, data in request.blobs.items():
                await self._store.put(digest, data)
        except (RemexError, ValueError) as e:
            await abort_rpc(context, e)
        return google_dot_protobuf_dot_empty__pb2.Empty()

    async def BatchReadBlobs(self, request:BatchReadBlobsRequest, context) -> BatchReadBlobsResponse:
        blobs = {}
        try:
            for digest in request.digests:
                data = await self._store.get(digest)
                if data is not None:
                    blobs[digest] = data
        except (RemexError, ValueError) as e:
            await abort_rpc(context, e)
        return BatchReadBlobsResponse(blobs)

    async def GetActionResult(self, request:GetActionResultRequest, context) -> ActionResult:
        result = await self._store.get_action_result(request.action_digest)
        if result is None:
            await context.abort(grpc.StatusCode.NOT_FOUND, f"Action result ({request.action_digest.hex()}) not found")
        return result

    async def UpdateActionResult(self, request:UpdateActionResultRequest, context):
        await self._store.put_action_result(request.action_digest, request.result)
        return google_dot_protobuf_dot_empty__pb2.Empty()

    async def Write(self, request_iterator, context) -> WriteResponse:
        digest = None
        chunks = []
        committed_size = 0
        async for request in request_iterator:
            if digest is None:
                digest = request.digest
            elif request.digest != digest:
                await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "All chunks of a write must have the same digest.")
            if request.offset != committed_size:
                await context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"Expected offset {committed_size}, got {request.offset}.")
            chunks.append(request.data)
            committed_size += len(request.data)
            if request.finish_write:
                break
        if digest is None:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "Write without any chunks.")
        # the blob only becomes visible once all chunks are in and verified
        try:
            await self._store.put(digest, b"".join(chunks))
        except (RemexError, ValueError) as e:
            await abort_rpc(context, e)
        return WriteResponse(committed_size)

    async def Read(self, request:ReadRequest, context):
        try:
            data = await self._store.get(request.digest)
        except (RemexError, ValueError) as e:
            await abort_rpc(context, e)
        if data is None:
            await context.abort(grpc.StatusCode.NOT_FOUND, f"Blob ({request.digest.hex()}) not found")
        for offset in range(0, max(len(data), 1), CHUNK_SIZE):
            yield ReadResponse(data[offset:offset+CHUNK_SIZE])


async def start_server(store:CacheStore, port:int=50051) -> tuple[Server, int]:
    """Starts a cache-only gRPC server. Returns the server and the port it is bound to (useful for port 0)."""
    server = grpc.aio.server(futures.ThreadPoolExecutor(max_workers=10))
    add_CacheServicer_to_server(CacheService(store), server)
    bound_port = server.add_insecure_port(f"[::]:{port}")
    await server.start()
    logger.info(f"Cache Server started, listening on {bound_port}")
    return server, bound_port


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    async def arun():
        server, _ = await start_server(LmdbCacheStore.from_path("/tmp/remex_cache"))
        await server.wait_for_termination()
    asyncio.run(arun())
