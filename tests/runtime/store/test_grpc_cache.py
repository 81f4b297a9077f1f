import os
import grpc
import pytest
from remex.cas import *
from remex.cas.stores.memory import MemoryCacheStore
from remex.runtime.store.cache_api import MAX_BATCH_BYTES, BatchUpdateBlobsRequest
from remex.runtime.store.cache_server import start_server
from remex.runtime.store.grpc_cache_store import GrpcCacheStore

#run with:
# pytest tests/runtime/store/ --log-cli-level=10 -s

async def setup_cache() -> tuple:
    store = MemoryCacheStore()
    server, port = await start_server(store, port=0)
    client_store = GrpcCacheStore.from_address(f"localhost:{port}", timeout_seconds=5)
    return server, store, client_store

async def test_put_get():
    server, store, client_store = await setup_cache()
    data = os.urandom(1024)
    digest = get_digest(data)

    assert await client_store.get(digest) is None
    await client_store.put(digest, data)
    assert await client_store.get(digest) == data
    assert await store.get(digest) == data
    assert await client_store.has(digest)

    await client_store.close()
    await server.stop(0)

async def test_large_blob_is_streamed():
    server, store, client_store = await setup_cache()
    data = os.urandom(MAX_BATCH_BYTES * 2 + 123)
    digest = get_digest(data)

    await client_store.put(digest, data)
    assert await store.get(digest) == data
    assert await client_store.get(digest) == data

    await client_store.close()
    await server.stop(0)

async def test_empty_blob():
    server, store, client_store = await setup_cache()
    digest = await client_store.put_blob(b"")
    assert await client_store.get(digest) == b""
    await client_store.close()
    await server.stop(0)

async def test_put_blobs_and_find_missing():
    server, store, client_store = await setup_cache()
    blobs = {}
    for _ in range(20):
        data = os.urandom(300*1024)
        blobs[get_digest(data)] = data
    absent = get_digest(b"absent")

    await client_store.put_blobs(blobs)
    assert store.blob_count() == 20
    assert await client_store.find_missing(list(blobs.keys()) + [absent]) == [absent]
    assert await client_store.find_missing([]) == []

    await client_store.close()
    await server.stop(0)

async def test_wrong_digest_is_rejected():
    server, store, client_store = await setup_cache()
    # bypass the client side check, the server must verify on its own
    with pytest.raises(CorruptionError):
        await client_store._call(client_store._stub.BatchUpdateBlobs(BatchUpdateBlobsRequest({get_digest(b"a"): b"b"})))
    assert store.blob_count() == 0
    await client_store.close()
    await server.stop(0)

async def test_action_results():
    server, store, client_store = await setup_cache()
    action_digest = get_digest(b"action")
    stdout_digest = await client_store.put_blob(b"out")
    result = ActionResult(0, stdout_digest, stdout_digest, {"a.txt": FileNode(stdout_digest, True)})

    assert await client_store.get_action_result(action_digest) is None
    await client_store.put_action_result(action_digest, result)
    assert await client_store.get_action_result(action_digest) == result
    assert await store.get_action_result(action_digest) == result

    await client_store.close()
    await server.stop(0)

async def test_unreachable_cache():
    # nothing listens on this port
    client_store = GrpcCacheStore.from_address("localhost:1", timeout_seconds=1)
    with pytest.raises(TransportUnavailableError):
        await client_store.get_action_result(get_digest(b"action"))
    with pytest.raises(TransportUnavailableError):
        await client_store.get(get_digest(b"blob"))
    await client_store.close()
    assert client_store.is_closed

async def test_close_is_idempotent():
    server, store, client_store = await setup_cache()
    assert not client_store.is_closed
    assert client_store.address.startswith("localhost:")
    await client_store.close()
    await client_store.close()
    assert client_store.is_closed
    await server.stop(0)

async def test_endpoint_without_cache_service():
    # a gRPC server that serves nothing answers every call with UNIMPLEMENTED
    server = grpc.aio.server()
    port = server.add_insecure_port("localhost:0")
    await server.start()
    client_store = GrpcCacheStore.from_address(f"localhost:{port}", timeout_seconds=5)
    with pytest.raises(TransportUnavailableError):
        await client_store.get_action_result(get_digest(b"action"))
    with pytest.raises(TransportUnavailableError):
        await client_store.put_blob(b"blob")
    await client_store.close()
    await server.stop(0)
