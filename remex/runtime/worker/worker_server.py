import os
import asyncio
from concurrent import futures
import grpc
from grpc import Server
from remex.cas import *
from remex.cas.errors import abort_rpc
from remex.cas.stores import open_store
from remex.config import WorkerConfig
from remex.runtime.store.cache_api import add_CacheServicer_to_server
from remex.runtime.store.cache_server import CacheService
from remex.runtime.web.rest_cache_server import RestCacheServer
from .worker_api import *
from .work_dirs import WorkDirPool
from .worker import ExecutionWorker

import logging
logger = logging.getLogger(__name__)


class ExecutionService(ExecutionServicer):
    def __init__(self, worker:ExecutionWorker):
        self.worker = worker

    async def Execute(self, request:ExecuteRequest, context:grpc.aio.ServicerContext) -> ActionResult:
        try:
            return await self.worker.execute(request.action, request.skip_cache_lookup)
        except (RemexError, ValueError) as e:
            await abort_rpc(context, e)


async def start_server(worker:ExecutionWorker, port:int=50051) -> tuple[Server, int]:
    """Starts a gRPC server that offers both the execution service and the cache service of the worker's store."""
    #not many threads needed, as the server is entirely async
    server = grpc.aio.server(futures.ThreadPoolExecutor(max_workers=5))
    add_ExecutionServicer_to_server(ExecutionService(worker), server)
    add_CacheServicer_to_server(CacheService(worker.store), server)
    bound_port = server.add_insecure_port(f"[::]:{port}")
    await server.start()
    logger.info(f"Worker Server started, listening on {bound_port}")
    return server, bound_port


async def serve(config:WorkerConfig, pid_file:str|None=None):
    """Runs a worker until it is stopped: gRPC execution and cache service, plus the REST cache if a rest port is set.

    All services share one store, so a blob uploaded through one transport is visible through the others.
    """
    os.makedirs(config.work_path, exist_ok=True)
    store = open_store(config.store, config.store_path or os.path.join(config.work_path, "cas-store"))
    pool = WorkDirPool(config.work_path, slots=config.slots, keep_work_dirs=config.keep_work_dirs)
    worker = ExecutionWorker(store, pool)

    server, bound_port = await start_server(worker, config.listen_port)
    tasks = [asyncio.create_task(server.wait_for_termination())]
    rest_server = None
    if config.rest_port is not None:
        rest_server = RestCacheServer(store, prefix=config.rest_prefix)
        tasks.append(asyncio.create_task(rest_server.run(port=config.rest_port)))

    if pid_file is not None:
        # the pid file is written last, its presence signals that the worker is listening
        with open(pid_file, 'w') as f:
            f.write(str(os.getpid()))

    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if rest_server is not None:
            rest_server.stop()
        await server.stop(0.5)
        await asyncio.wait(tasks, timeout=1.0)
        await store.close()
        logger.info(f"Worker Server on port {bound_port} stopped.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(serve(WorkerConfig(work_path="/tmp/remex_worker")))
