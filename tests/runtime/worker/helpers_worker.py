import os
from remex.cas import *
from remex.cas.stores.memory import MemoryCacheStore
from remex.runtime.worker.work_dirs import WorkDirPool
from remex.runtime.worker.worker import ExecutionWorker

SH = "/bin/sh"

def setup_worker(tmp_path, slots:int=4) -> ExecutionWorker:
    store = MemoryCacheStore()
    pool = WorkDirPool(os.path.join(str(tmp_path), "work"), slots=slots)
    return ExecutionWorker(store, pool)

async def put_file_inputs(store:CacheStore, files:dict[str, bytes]) -> dict[str, Node]:
    inputs = {}
    for path, data in files.items():
        digest = await store.put_blob(data)
        inputs[path] = FileNode(digest, False)
    return inputs

def shell_action(script:str, inputs:dict[str, Node]|None=None, outputs:list[str]|None=None, timeout:float|None=None) -> Action:
    return Action([SH, "-c", script], inputs or {}, outputs or [], None, timeout)

async def read_output(store:CacheStore, result:ActionResult, path:str) -> bytes:
    node = result.outputs[path]
    assert is_file_node(node)
    return await store.get(node.digest)
