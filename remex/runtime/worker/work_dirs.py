import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncIterator
from remex.cas.errors import WorkerBusyError

import logging
logger = logging.getLogger(__name__)

class WorkDirPool:
    """A bounded pool of working directory leases, one per executing action.

    Every lease is a fresh, uniquely named, empty directory under '<work_path>/exec'.
    When all slots are leased, acquiring another one fails right away with a WorkerBusyError,
    the pool never queues. A lease is always released, no matter how the action ends.
    """
    def __init__(self, work_path:str, slots:int=4, keep_work_dirs:bool=False):
        if slots < 1:
            raise ValueError(f"slots must be at least 1, but was {slots}.")
        self.work_path = work_path
        self.exec_path = os.path.join(work_path, "exec")
        self.slots = slots
        self.keep_work_dirs = keep_work_dirs
        self._leases:set[str] = set()
        os.makedirs(self.exec_path, exist_ok=True)

    @property
    def free_slots(self) -> int:
        return self.slots - len(self._leases)

    @property
    def leases(self) -> list[str]:
        return list(self._leases)

    @asynccontextmanager
    async def acquire(self, name:str="action") -> AsyncIterator[str]:
        # no await between the check and the add, so this is atomic on the event loop
        if len(self._leases) >= self.slots:
            raise WorkerBusyError(f"All {self.slots} worker slots are in use.")
        lease_dir = os.path.join(self.exec_path, f"{name}-{os.urandom(8).hex()}")
        # exist_ok is False on purpose, a lease never reuses a previous run's directory
        os.makedirs(lease_dir)
        self._leases.add(lease_dir)
        logger.debug(f"Leased work dir {lease_dir} ({self.free_slots} slots free)")
        try:
            yield lease_dir
        finally:
            self._leases.discard(lease_dir)
            if not self.keep_work_dirs:
                shutil.rmtree(lease_dir, ignore_errors=True)
            logger.debug(f"Released work dir {lease_dir} ({self.free_slots} slots free)")
