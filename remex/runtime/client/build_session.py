from __future__ import annotations
import os
import asyncio
import shutil
from remex.cas import *
from remex.config import ClientConfig
from remex.runtime.store.grpc_cache_store import GrpcCacheStore
from remex.runtime.web.rest_cache_store import RestCacheStore
from remex.runtime.worker.worker_client import WorkerClient
from .action_inputs import ActionSpec, prepare_action, result_nodes
from .local_executor import LocalExecutor

import logging
logger = logging.getLogger(__name__)

_BUSY_RETRIES = 3
_BUSY_BACKOFF_SECONDS = 0.2

class BuildSession:
    """Runs actions for one build, with remote caches and an optional remote executor.

    How does a session deal with failing endpoints?
    A cache that fails for any reason other than a bad entry is disabled for the rest of the
    session and every lookup on it counts as a miss. A corrupt or incomplete entry is only skipped.
    An unreachable executor makes the session fall back to local execution. So a build only fails if an action itself fails.

    All connections are owned by the session and closed when it ends.
    """

    def __init__(self, config:ClientConfig|None=None, local_work_path:str|None=None, local_slots:int=4):
        self.config = config or ClientConfig()
        self._local_work_path = local_work_path
        self._local_slots = local_slots
        self._local:LocalExecutor|None = None
        self._caches:list[CacheStore] = []
        self._disabled_caches:set[int] = set()
        self._worker_client:WorkerClient|None = None
        self._executor_store:GrpcCacheStore|None = None
        self._executor_available = True
        self._clients:list = []
        self._opened = False

    async def __aenter__(self) -> BuildSession:
        self.open()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    def open(self):
        config = self.config
        if config.spawn_strategy == "remote" and config.remote_executor is None:
            raise ValueError("The 'remote' spawn strategy requires a remote executor address.")
        self._local = LocalExecutor(self._local_work_path, slots=self._local_slots)
        if config.remote_cache is not None:
            cache = GrpcCacheStore.from_address(config.remote_cache, config.timeout_seconds)
            self._caches.append(cache)
            self._clients.append(cache)
        if config.remote_rest_cache is not None:
            cache = RestCacheStore(config.remote_rest_cache, config.timeout_seconds)
            self._caches.append(cache)
            self._clients.append(cache)
        if config.spawn_strategy == "remote":
            self._worker_client = WorkerClient(
                config.remote_executor,
                timeout_seconds=config.timeout_seconds,
                execute_timeout_seconds=config.execute_timeout_seconds)
            self._clients.append(self._worker_client)
            # the worker serves its cache on the same address, reuse the cache client if there is one
            for cache in self._caches:
                if isinstance(cache, GrpcCacheStore) and cache.address == config.remote_executor:
                    self._executor_store = cache
            if self._executor_store is None:
                self._executor_store = GrpcCacheStore.from_address(config.remote_executor, config.timeout_seconds)
                self._clients.append(self._executor_store)
        self._opened = True

    async def close(self):
        for client in self._clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error while closing {type(client).__name__}: {e}")
        if self._local is not None:
            self._local.close()
        self._opened = False

    @property
    def open_clients(self) -> list[str]:
        """Addresses of transport clients that still hold a connection."""
        return [client.address for client in self._clients if not client.is_closed]

    @property
    def local_store(self) -> CacheStore:
        return self._local.store

    async def read_blob(self, digest:Digest) -> bytes:
        data = await self._local.store.get(digest)
        if data is None:
            raise NotFoundError(f"Blob '{digest.hex()}' is not in the session's local store.")
        return data

    #=========================================================
    # Running Actions
    #=========================================================
    async def run(self, exec_root:str, spec:ActionSpec) -> ActionResult:
        """Runs an action, using a cached result if there is one, and writes its outputs into the exec root."""
        if not self._opened:
            raise RuntimeError("BuildSession is not open.")
        action, blobs = prepare_action(exec_root, spec)
        action_digest = get_action_digest(action)
        description = f"'{action.arguments[0]}' ({action_digest.hex()})"

        result = await self._lookup(action_digest)
        if result is None:
            try:
                result, published_to = await self._execute(action, action_digest, blobs)
            except (MissingInputError, MissingOutputError, ActionTimeoutError, ActionFailedError, CorruptionError) as e:
                raise ActionFailedError(f"Action {description} failed: {e.message}", action_digest) from e
            await self._publish(action_digest, result, published_to)
        await self._materialize_outputs(exec_root, result)
        return result

    async def _lookup(self, action_digest:ActionDigest) -> ActionResult | None:
        for cache in self._healthy_caches():
            try:
                result = await cache.get_action_result(action_digest)
                if result is None:
                    continue
                await copy_blobs(cache, self._local.store, result_nodes(result))
            except (NotFoundError, CorruptionError) as e:
                logger.warning(f"Ignoring cached result of {action_digest.hex()} in {cache.address}: {e}")
                continue
            except RemexError as e:
                self._disable_cache(cache, e)
                continue
            logger.info(f"Cache hit for {action_digest.hex()} in {cache.address}")
            return result
        return None

    async def _execute(self, action:Action, action_digest:ActionDigest, blobs:dict[Digest, bytes]) -> tuple[ActionResult, CacheStore|None]:
        if self._worker_client is not None and self._executor_available:
            try:
                result = await self._execute_remote(action, blobs)
                await copy_blobs(self._executor_store, self._local.store, result_nodes(result))
                return result, self._executor_store
            except (TransportUnavailableError, WorkerBusyError, NotFoundError) as e:
                if isinstance(e, TransportUnavailableError):
                    self._executor_available = False
                logger.warning(f"Remote execution of {action_digest.hex()} failed ({e}), falling back to local execution.")
        return await self._local.execute(action, blobs), None

    async def _execute_remote(self, action:Action, blobs:dict[Digest, bytes]) -> ActionResult:
        missing = await self._executor_store.find_missing(blobs.keys())
        await self._executor_store.put_blobs({digest: blobs[digest] for digest in missing})
        for attempt in range(_BUSY_RETRIES + 1):
            try:
                return await self._worker_client.execute(action)
            except WorkerBusyError:
                if attempt == _BUSY_RETRIES:
                    raise
                await asyncio.sleep(_BUSY_BACKOFF_SECONDS * (2 ** attempt))

    async def _publish(self, action_digest:ActionDigest, result:ActionResult, published_to:CacheStore|None):
        for cache in self._healthy_caches():
            if cache is published_to:
                continue
            try:
                await copy_blobs(self._local.store, cache, result_nodes(result))
                await cache.put_action_result(action_digest, result)
            except CorruptionError as e:
                logger.warning(f"Could not upload result of {action_digest.hex()} to {cache.address}: {e}")
            except RemexError as e:
                self._disable_cache(cache, e)

    async def _materialize_outputs(self, exec_root:str, result:ActionResult):
        for path, node in result.outputs.items():
            dest_path = join_path(exec_root, path)
            _remove_existing(dest_path)
            await materialize_node(self._local.store, node, dest_path)

    def _healthy_caches(self) -> list[CacheStore]:
        return [cache for cache in self._caches if id(cache) not in self._disabled_caches]

    def _disable_cache(self, cache:CacheStore, error:Exception):
        logger.warning(f"Cache {cache.address} is unavailable, disabling it for this build: {error}")
        self._disabled_caches.add(id(cache))


def _remove_existing(path:str):
    if os.path.islink(path) or os.path.isfile(path):
        os.remove(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)
