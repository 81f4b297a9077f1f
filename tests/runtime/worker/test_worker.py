import os
import asyncio
import pytest
from remex.cas import *
from remex.runtime.worker.worker import ActionExecution
import helpers_worker as helpers

#run with:
# pytest tests/runtime/worker/ --log-cli-level=10 -s

async def test_execute_simple(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    inputs = await helpers.put_file_inputs(worker.store, {"in/a.txt": b"hello"})
    action = helpers.shell_action("cat in/a.txt > out/b.txt; echo done", inputs, ["out/b.txt"])

    result = await worker.execute(action)

    assert result.exit_code == 0
    assert await helpers.read_output(worker.store, result, "out/b.txt") == b"hello"
    assert await worker.store.get(result.stdout_digest) == b"done\n"
    assert await worker.store.get(result.stderr_digest) == b""
    assert await worker.store.get_action_result(get_action_digest(action)) == result
    # the lease is gone
    assert os.listdir(worker.pool.exec_path) == []

async def test_execute_uses_action_cache(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    marker = os.path.join(str(tmp_path), "runs.txt")
    action = helpers.shell_action(f"echo run >> {marker}")

    result1 = await worker.execute(action)
    result2 = await worker.execute(action)
    with open(marker) as f:
        assert f.read() == "run\n"
    assert result1 == result2

    await worker.execute(action, skip_cache_lookup=True)
    with open(marker) as f:
        assert f.read() == "run\nrun\n"

async def test_execute_directory_and_symlink_outputs(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    action = helpers.shell_action(
        "mkdir -p out/dir && echo x > out/dir/x.txt && ln -s dir/x.txt out/link",
        outputs=["out/dir", "out/link"])

    result = await worker.execute(action)

    assert result.outputs["out/link"] == SymlinkNode("dir/x.txt")
    assert is_directory_node(result.outputs["out/dir"])
    dest = os.path.join(str(tmp_path), "dest")
    await materialize(worker.store, result.outputs["out/dir"].digest, dest)
    with open(os.path.join(dest, "x.txt")) as f:
        assert f.read() == "x\n"

async def test_execute_directory_input(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    src = os.path.join(str(tmp_path), "src")
    os.makedirs(os.path.join(src, "sub"))
    with open(os.path.join(src, "sub", "a.txt"), "w") as f:
        f.write("a")
    os.symlink("sub/a.txt", os.path.join(src, "link"))
    tree_digest = await store_tree(worker.store, read_tree(src))

    action = helpers.shell_action("cat lib/link > out.txt", {"lib": DirectoryNode(tree_digest)}, ["out.txt"])
    result = await worker.execute(action)
    assert await helpers.read_output(worker.store, result, "out.txt") == b"a"

async def test_missing_input(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    missing_digest = get_digest(b"never uploaded")
    action = helpers.shell_action("cat a.txt", {"a.txt": FileNode(missing_digest, False)})

    with pytest.raises(MissingInputError) as e:
        await worker.execute(action)
    assert e.value.missing == [missing_digest]
    assert e.value.action_digest == get_action_digest(action)

async def test_missing_output(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    action = helpers.shell_action("true", outputs=["never.txt"])
    with pytest.raises(MissingOutputError) as e:
        await worker.execute(action)
    assert e.value.action_digest == get_action_digest(action)
    assert await worker.store.get_action_result(get_action_digest(action)) is None

async def test_failing_command_is_a_result(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    action = helpers.shell_action("echo oops >&2; exit 3", outputs=["never.txt"])
    result = await worker.execute(action)
    assert result.exit_code == 3
    assert result.outputs == {}
    assert await worker.store.get(result.stderr_digest) == b"oops\n"

async def test_unknown_command(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    action = Action(["/does/not/exist"], {}, [], None, None)
    with pytest.raises(ActionFailedError):
        await worker.execute(action)

async def test_timeout(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    action = helpers.shell_action("exec sleep 10", timeout=0.2)
    with pytest.raises(ActionTimeoutError):
        await worker.execute(action)
    assert worker.pool.free_slots == worker.pool.slots

async def test_environment_is_only_the_action_environment(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    os.environ["REMEX_TEST_LEAK"] = "leaked"
    try:
        action = Action([helpers.SH, "-c", "echo \"$GREETING-$REMEX_TEST_LEAK\""], {}, [], {"GREETING": "hi"}, None)
        result = await worker.execute(action)
    finally:
        del os.environ["REMEX_TEST_LEAK"]
    assert await worker.store.get(result.stdout_digest) == b"hi-\n"

async def test_busy(tmp_path):
    worker = helpers.setup_worker(tmp_path, slots=1)
    slow = asyncio.create_task(worker.execute(helpers.shell_action("sleep 0.5")))
    await asyncio.sleep(0.1)
    with pytest.raises(WorkerBusyError):
        await worker.execute(helpers.shell_action("true"))
    await slow

async def test_concurrent_actions_do_not_mix(tmp_path):
    worker = helpers.setup_worker(tmp_path)
    inputs_a = await helpers.put_file_inputs(worker.store, {"in.txt": b"aaa"})
    inputs_b = await helpers.put_file_inputs(worker.store, {"in.txt": b"bbb"})
    # both actions write the same relative path, each must only see its own input
    action_a = helpers.shell_action("sleep 0.2; cat in.txt > out.txt", inputs_a, ["out.txt"])
    action_b = helpers.shell_action("sleep 0.2; cat in.txt > out.txt", inputs_b, ["out.txt"])

    result_a, result_b = await asyncio.gather(worker.execute(action_a), worker.execute(action_b))

    assert await helpers.read_output(worker.store, result_a, "out.txt") == b"aaa"
    assert await helpers.read_output(worker.store, result_b, "out.txt") == b"bbb"

def test_action_execution_states():
    action = helpers.shell_action("true")
    execution = ActionExecution(action, get_action_digest(action))
    assert execution.state == "received"
    execution.start_materializing()
    execution.start_executing()
    execution.start_capturing()
    execution.complete()
    assert execution.state == "completed"

def test_action_execution_rejects_skipping_states():
    action = helpers.shell_action("true")
    execution = ActionExecution(action, get_action_digest(action))
    with pytest.raises(Exception):
        execution.start_executing()
    execution.fail()
    assert execution.state == "failed"
