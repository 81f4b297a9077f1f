import asyncio
import shutil
import tempfile
from remex.cas import *
from remex.cas.stores.memory import MemoryCacheStore
from remex.runtime.worker.work_dirs import WorkDirPool
from remex.runtime.worker.worker import ExecutionWorker

class LocalExecutor:
    """Runs actions on this machine with the same worker logic a remote worker uses.

    Its in-memory store doubles as the build session's local cache, all results and
    output blobs pass through it before they are materialized or uploaded.
    Unlike a remote worker, it waits for a free slot instead of failing with a WorkerBusyError.
    """
    def __init__(self, work_path:str|None=None, slots:int=4):
        self._temp_dir = None
        if work_path is None:
            self._temp_dir = tempfile.mkdtemp(prefix="remex-local-")
            work_path = self._temp_dir
        self.store = MemoryCacheStore()
        self.worker = ExecutionWorker(self.store, WorkDirPool(work_path, slots=slots))
        self._slots = asyncio.Semaphore(slots)

    async def execute(self, action:Action, blobs:dict[Digest, bytes]) -> ActionResult:
        for digest in await self.store.find_missing(blobs.keys()):
            await self.store.put(digest, blobs[digest])
        async with self._slots:
            return await self.worker.execute(action)

    def close(self):
        if self._temp_dir is not None:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None
