import grpc
from remex.cas import *
from remex.cas.errors import error_from_rpc
from remex.runtime.store.base_client import BaseClient, DEFAULT_TIMEOUT_SECONDS
from .worker_api import *

import logging
logger = logging.getLogger(__name__)

# executing an action can take much longer than a cache call
DEFAULT_EXECUTE_TIMEOUT_SECONDS = 15*60

class WorkerClient(BaseClient):
    def __init__(
            self,
            server_address="localhost:50051",
            timeout_seconds:float=DEFAULT_TIMEOUT_SECONDS,
            execute_timeout_seconds:float=DEFAULT_EXECUTE_TIMEOUT_SECONDS):
        super().__init__(server_address, timeout_seconds)
        self.execute_timeout_seconds = execute_timeout_seconds

    def get_execution_stub_async(self) -> ExecutionStub:
        return ExecutionStub(self.channel_async)

    async def execute(self, action:Action, skip_cache_lookup:bool=False) -> ActionResult:
        timeout = self.execute_timeout_seconds
        if action.timeout is not None:
            # leave the worker time to report its own timeout
            timeout = max(timeout, action.timeout + self.timeout_seconds)
        try:
            return await self.get_execution_stub_async().Execute(
                ExecuteRequest(action, skip_cache_lookup),
                timeout=timeout)
        except grpc.aio.AioRpcError as e:
            raise error_from_rpc(e) from e
