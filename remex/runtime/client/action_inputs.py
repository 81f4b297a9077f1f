from dataclasses import dataclass, field
from remex.cas import *

@dataclass
class ActionSpec:
    """An action as a build client describes it, with paths relative to an exec root."""
    arguments:list[str]
    inputs:list[str] = field(default_factory=list)
    outputs:list[str] = field(default_factory=list)
    environment:dict[str, str]|None = None
    timeout:float|None = None

def prepare_action(exec_root:str, spec:ActionSpec) -> tuple[Action, dict[Digest, bytes]]:
    """Digests the declared inputs from disk. Returns the action and every blob its inputs need."""
    if len(spec.arguments) == 0:
        raise ValueError("An action needs at least one argument.")
    inputs:dict[str, Node] = {}
    blobs:dict[Digest, bytes] = {}
    for path in spec.inputs:
        path = normalize_path(path)
        node, node_blobs = read_node(join_path(exec_root, path))
        inputs[path] = node
        blobs.update(node_blobs)
    outputs = [normalize_path(path) for path in spec.outputs]
    action = Action(
        list(spec.arguments),
        inputs,
        outputs,
        dict(spec.environment) if spec.environment else None,
        spec.timeout)
    return action, blobs

def result_nodes(result:ActionResult) -> list[Node]:
    """All nodes whose blobs a client needs to use the result: outputs, stdout, and stderr."""
    return list(result.outputs.values()) + [
        FileNode(result.stdout_digest, False),
        FileNode(result.stderr_digest, False)]
