import os
import asyncio
import pytest
from remex.cas import *

# shared checks, run against every cache store backend

def get_random_result(stdout_digest:Digest, stderr_digest:Digest) -> ActionResult:
    return ActionResult(0, stdout_digest, stderr_digest, {"out.txt": FileNode(get_digest(os.urandom(16)), False)})

async def check_put_get(store:CacheStore):
    data = os.urandom(1024)
    digest = get_digest(data)
    assert await store.get(digest) is None
    assert not await store.has(digest)
    await store.put(digest, data)
    assert await store.get(digest) == data
    assert await store.has(digest)

async def check_put_is_idempotent(store:CacheStore):
    data = os.urandom(1024)
    digest = await store.put_blob(data)
    await store.put(digest, data)
    assert await store.get(digest) == data

async def check_put_rejects_wrong_digest(store:CacheStore):
    data = os.urandom(1024)
    wrong_digest = get_digest(b"something else")
    with pytest.raises(CorruptionError):
        await store.put(wrong_digest, data)
    assert await store.get(wrong_digest) is None

async def check_find_missing(store:CacheStore):
    present = await store.put_blob(b"present")
    absent = get_digest(b"absent")
    assert await store.find_missing([present, absent, absent]) == [absent]

async def check_concurrent_puts(store:CacheStore):
    data = os.urandom(200000)
    digest = get_digest(data)
    await asyncio.gather(*[store.put(digest, data) for _ in range(10)])
    assert await store.get(digest) == data

async def check_action_results(store:CacheStore):
    action_digest = get_digest(b"some action")
    assert await store.get_action_result(action_digest) is None
    first = get_random_result(get_digest(b"1"), get_digest(b"2"))
    await store.put_action_result(action_digest, first)
    assert await store.get_action_result(action_digest) == first
    # the first result stays, a second write never replaces it
    second = get_random_result(get_digest(b"3"), get_digest(b"4"))
    await store.put_action_result(action_digest, second)
    assert await store.get_action_result(action_digest) == first
