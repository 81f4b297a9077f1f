from __future__ import annotations
import os
import asyncio
from transitions import Machine
from remex.cas import *
from .work_dirs import WorkDirPool

import logging
logger = logging.getLogger(__name__)


class ActionExecution:
    """Tracks the state of a single submitted action.

    received -> inputs_materializing -> executing -> outputs_capturing -> completed
    Any state can move to failed. A cache hit goes straight from received to completed.
    """
    states = [
        'received',
        'inputs_materializing',
        'executing',
        'outputs_capturing',
        'completed',
        'failed',
        ]

    state:str
    error:BaseException|None = None

    def __init__(self, action:Action, action_digest:ActionDigest):
        self.action = action
        self.action_digest = action_digest
        self.machine = Machine(
            model=self,
            states=ActionExecution.states,
            initial='received',
            after_state_change='_log_state',
            auto_transitions=False)
        self.machine.add_transition(trigger='start_materializing', source='received', dest='inputs_materializing')
        self.machine.add_transition(trigger='start_executing', source='inputs_materializing', dest='executing')
        self.machine.add_transition(trigger='start_capturing', source='executing', dest='outputs_capturing')
        self.machine.add_transition(trigger='complete', source=['received', 'outputs_capturing'], dest='completed')
        self.machine.add_transition(trigger='fail', source='*', dest='failed')

    def _log_state(self):
        logger.debug(f"Action {self.action_digest.hex()[:12]}: {self.state}")


class ExecutionWorker:
    """Executes actions in isolated working directories and publishes their results to the cache store."""

    def __init__(self, store:CacheStore, pool:WorkDirPool):
        self.store = store
        self.pool = pool

    async def execute(self, action:Action, skip_cache_lookup:bool=False) -> ActionResult:
        if action.arguments is None or len(action.arguments) == 0:
            raise ValueError("Action must have at least one argument.")
        action_digest = get_action_digest(action)
        execution = ActionExecution(action, action_digest)
        try:
            return await self._execute(execution, skip_cache_lookup)
        except BaseException as e:
            execution.error = e
            execution.fail()
            if isinstance(e, RemexError) and e.action_digest is None:
                e.action_digest = action_digest
            if isinstance(e, Exception):
                logger.warning(f"Action {action_digest.hex()} failed: {e}")
            raise

    async def _execute(self, execution:ActionExecution, skip_cache_lookup:bool) -> ActionResult:
        action = execution.action
        action_digest = execution.action_digest

        # the worker never re-derives inputs, everything must already be in the store
        missing = await find_missing_blobs(self.store, action.inputs.values())
        if len(missing) > 0:
            raise MissingInputError(
                f"{len(missing)} input blob(s) missing from the cache, first: {missing[0].hex()}",
                action_digest,
                missing)

        if not skip_cache_lookup:
            cached = await self.store.get_action_result(action_digest)
            if cached is not None:
                logger.info(f"Action {action_digest.hex()} served from the action cache.")
                execution.complete()
                return cached

        async with self.pool.acquire(action_digest.hex()[:12]) as exec_dir:
            execution.start_materializing()
            for path, node in action.inputs.items():
                await materialize_node(self.store, node, join_path(exec_dir, path))
            for output in action.outputs:
                output_parent = os.path.dirname(join_path(exec_dir, output))
                os.makedirs(output_parent, exist_ok=True)

            execution.start_executing()
            exit_code, stdout, stderr = await self._run_command(action, action_digest, exec_dir)
            stdout_digest = await self.store.put_blob(stdout)
            stderr_digest = await self.store.put_blob(stderr)

            execution.start_capturing()
            outputs = await self._capture_outputs(action, action_digest, exec_dir, exit_code)

            result = ActionResult(exit_code, stdout_digest, stderr_digest, outputs)
            await self.store.put_action_result(action_digest, result)
            execution.complete()
            logger.info(f"Action {action_digest.hex()} completed with exit code {exit_code}.")
            return result

    async def _run_command(self, action:Action, action_digest:ActionDigest, exec_dir:str) -> tuple[int, bytes, bytes]:
        try:
            process = await asyncio.create_subprocess_exec(
                *action.arguments,
                cwd=exec_dir,
                env=dict(action.environment or {}),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE)
        except OSError as e:
            raise ActionFailedError(f"Command '{action.arguments[0]}' could not be started: {e}", action_digest) from e
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=action.timeout)
        except asyncio.TimeoutError as e:
            await _kill(process)
            raise ActionTimeoutError(f"Command '{action.arguments[0]}' timed out after {action.timeout} seconds.", action_digest) from e
        except asyncio.CancelledError:
            await _kill(process)
            raise
        return process.returncode, stdout, stderr

    async def _capture_outputs(self, action:Action, action_digest:ActionDigest, exec_dir:str, exit_code:int) -> dict[str, Node]:
        outputs:dict[str, Node] = {}
        for output in action.outputs:
            output_path = join_path(exec_dir, output)
            if not os.path.lexists(output_path):
                # a failed command is a normal outcome, the missing outputs are part of that failure
                if exit_code != 0:
                    continue
                raise MissingOutputError(f"Declared output '{output}' was not produced.", action_digest)
            node, blobs = read_node(output_path)
            for digest in await self.store.find_missing(blobs.keys()):
                await self.store.put(digest, blobs[digest])
            outputs[normalize_path(output)] = node
        return outputs


async def _kill(process:asyncio.subprocess.Process):
    if process.returncode is None:
        process.kill()
    await process.wait()
