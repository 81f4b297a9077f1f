import os
import pytest
from remex.cas import *
from remex.runtime.client.action_inputs import ActionSpec, prepare_action, result_nodes
import helpers_client as helpers

def test_prepare_action(tmp_path):
    exec_root = helpers.make_exec_root(str(tmp_path), helpers.SOURCE_FILES)
    action, blobs = prepare_action(exec_root, helpers.concat_spec())
    assert set(action.inputs.keys()) == {"src/a.txt", "src/b.txt"}
    assert blobs[action.inputs["src/a.txt"].digest] == b"aaa\n"
    assert action.outputs == ["out/ab.txt", "out/link"]
    assert action.environment is None

def test_prepare_action_input_order_does_not_matter(tmp_path):
    exec_root = helpers.make_exec_root(str(tmp_path), helpers.SOURCE_FILES)
    spec = helpers.concat_spec()
    reversed_spec = ActionSpec(spec.arguments, list(reversed(spec.inputs)), list(reversed(spec.outputs)))
    action1, _ = prepare_action(exec_root, spec)
    action2, _ = prepare_action(exec_root, reversed_spec)
    assert get_action_digest(action1) == get_action_digest(action2)

def test_prepare_action_directory_input(tmp_path):
    exec_root = helpers.make_exec_root(str(tmp_path), {"lib/x/y.txt": "y"})
    os.symlink("x/y.txt", os.path.join(exec_root, "lib", "link"))
    action, blobs = prepare_action(exec_root, ActionSpec(["true"], inputs=["lib"]))
    node = action.inputs["lib"]
    assert is_directory_node(node)
    directory = bytes_to_directory(blobs[node.digest])
    assert directory["link"] == SymlinkNode("x/y.txt")

def test_prepare_action_rejects_bad_specs(tmp_path):
    exec_root = helpers.make_exec_root(str(tmp_path))
    with pytest.raises(ValueError):
        prepare_action(exec_root, ActionSpec([]))
    with pytest.raises(ValueError):
        prepare_action(exec_root, ActionSpec(["true"], inputs=["../escape.txt"]))
    with pytest.raises(FileNotFoundError):
        prepare_action(exec_root, ActionSpec(["true"], inputs=["missing.txt"]))

def test_result_nodes():
    digest = get_digest(b"x")
    result = ActionResult(0, get_digest(b"out"), get_digest(b"err"), {"a": FileNode(digest, False)})
    nodes = result_nodes(result)
    assert FileNode(digest, False) in nodes
    assert FileNode(get_digest(b"out"), False) in nodes
    assert FileNode(get_digest(b"err"), False) in nodes
