import hashlib
import string
import struct
from remex.cas.object_model import *

# Canonical encoding of directories, actions, and action results.
#
# Every object is encoded as "<kind> <body length>\0<body>". The body layouts are fixed
# so that any independent implementation computes the same digest for the same object:
#
#   directory: entries sorted by utf-8 name, each "<t><name>\0<payload>" where t is
#              'f' (payload: 32 byte digest + 1 byte executable flag),
#              'l' (payload: utf-8 target + \0), or 'd' (payload: 32 byte digest)
#   action:    u32 argument count, each argument as u32 length + utf-8,
#              environment sorted by key as "key\0value\0", terminated by \0,
#              u32 input count, inputs sorted by path encoded like directory entries,
#              u32 output count, outputs sorted as "path\0",
#              u64 timeout in milliseconds (0 means no timeout)
#   result:    i32 exit code, stdout digest, stderr digest,
#              u32 output count, outputs sorted by path encoded like directory entries
#
# Plain blobs (file contents, stdout, stderr) are not framed, their digest is the sha256 of the raw bytes.

_HEADER_ENCODING = 'ascii'
_STR_ENCODING = 'utf-8'
_ID_LEN = 32
_ID_STR_LEN = 64

_FILE = b'f'
_SYMLINK = b'l'
_DIRECTORY = b'd'

def get_digest(data:bytes | bytearray) -> Digest:
    return hashlib.sha256(data).digest()

def is_digest_str(digest_str:str) -> bool:
    return isinstance(digest_str, str) and len(digest_str) == _ID_STR_LEN and all(c in string.hexdigits for c in digest_str)

def is_digest(digest:Digest) -> bool:
    return (isinstance(digest, bytes) or isinstance(digest, bytearray)) and len(digest) == _ID_LEN

def is_digest_match(digest:Digest, other:Digest) -> bool:
    return bytes(digest) == bytes(other)

def to_digest_str(digest:Digest) -> str:
    return digest.hex()

def to_digest(digest_str:str) -> Digest:
    if not is_digest_str(digest_str):
        raise ValueError(f"'{digest_str}' is not a hex encoded sha256 digest.")
    return bytes.fromhex(digest_str)

def is_file_node(node:Node) -> bool:
    return isinstance(node, FileNode)

def is_symlink_node(node:Node) -> bool:
    return isinstance(node, SymlinkNode)

def is_directory_node(node:Node) -> bool:
    return isinstance(node, DirectoryNode)

def get_directory_digest(directory:Directory) -> TreeDigest:
    return get_digest(directory_to_bytes(directory))

def get_action_digest(action:Action) -> ActionDigest:
    return get_digest(action_to_bytes(action))

def peek_object_kind(data:bytes) -> str | None:
    """Returns the kind of an encoded object, or None if the bytes are not a framed object."""
    end = data.find(b'\x00', 0, 32)
    if end < 0:
        return None
    try:
        kind, length_str = data[:end].decode(_HEADER_ENCODING).split(' ')
        int(length_str)
    except (UnicodeDecodeError, ValueError):
        return None
    return kind

#============================================================
# Internal Helpers
#============================================================
def _object_header_to_bytes(object_kind:str, length:int) -> bytearray:
    return bytearray(f"{object_kind} {length}\x00".encode(_HEADER_ENCODING))

def _enforce_and_skip_object_header(data:bytes, expected_object_kind:str) -> bytes:
    header, body = bytes(data).split(b'\x00', 1)
    header_str = header.decode(_HEADER_ENCODING)
    object_kind, length_str = header_str.split(' ')
    if object_kind != expected_object_kind:
        raise TypeError(f"Expected {expected_object_kind} but got {object_kind}")
    length = int(length_str)
    if len(body) != length:
        raise ValueError(f"Expected object body of {length} bytes but got {len(body)}")
    return body

def _enforce_digest(digest:Digest) -> Digest:
    if not isinstance(digest, (bytes, bytearray)):
        raise TypeError(f"Expected digest of type bytes but got {type(digest)}")
    if len(digest) != _ID_LEN:
        raise ValueError(f"Expected digest of {_ID_LEN} bytes but got {len(digest)}")
    return bytes(digest)

def _split_bytes(data:bytes, n:int) -> tuple[bytes, bytes]:
    if len(data) < n:
        raise ValueError(f"Expected at least {n} bytes but got {len(data)}")
    return data[:n], data[n:]

def _encode_str(value:str) -> bytes:
    encoded = value.encode(_STR_ENCODING)
    if b'\x00' in encoded:
        raise ValueError(f"String must not contain a NUL character: '{value}'")
    return encoded

def _write_u32(value:int, result:bytearray) -> bytearray:
    result += struct.pack(">I", value)
    return result

def _read_u32(data:bytes) -> tuple[int, bytes]:
    value_bytes, data = _split_bytes(data, 4)
    return struct.unpack(">I", value_bytes)[0], data

def _write_node(name:str, node:Node, result:bytearray) -> bytearray:
    if is_file_node(node):
        result += _FILE
        result += _encode_str(name)
        result += b'\x00'
        result += _enforce_digest(node.digest)
        result += b'\x01' if node.executable else b'\x00'
    elif is_symlink_node(node):
        result += _SYMLINK
        result += _encode_str(name)
        result += b'\x00'
        result += _encode_str(node.target)
        result += b'\x00'
    elif is_directory_node(node):
        result += _DIRECTORY
        result += _encode_str(name)
        result += b'\x00'
        result += _enforce_digest(node.digest)
    else:
        raise TypeError(f"Unknown node type {type(node)}")
    return result

def _read_node(data:bytes) -> tuple[str, Node, bytes]:
    node_type, data = _split_bytes(data, 1)
    name, data = data.split(b'\x00', 1)
    if node_type == _FILE:
        digest, data = _split_bytes(data, _ID_LEN)
        flag, data = _split_bytes(data, 1)
        node = FileNode(_enforce_digest(digest), flag == b'\x01')
    elif node_type == _SYMLINK:
        target, data = data.split(b'\x00', 1)
        node = SymlinkNode(target.decode(_STR_ENCODING))
    elif node_type == _DIRECTORY:
        digest, data = _split_bytes(data, _ID_LEN)
        node = DirectoryNode(_enforce_digest(digest))
    else:
        raise TypeError(f"Unknown node type byte {node_type!r}")
    return name.decode(_STR_ENCODING), node, data

def _write_nodes(nodes:dict[str, Node], result:bytearray) -> bytearray:
    result = _write_u32(len(nodes), result)
    for name in sorted(nodes, key=lambda n: n.encode(_STR_ENCODING)):
        result = _write_node(name, nodes[name], result)
    return result

def _read_nodes(data:bytes) -> tuple[dict[str, Node], bytes]:
    count, data = _read_u32(data)
    nodes = {}
    for _ in range(count):
        name, node, data = _read_node(data)
        nodes[name] = node
    return nodes, data

def _enforce_segment(name:str) -> str:
    if name in ("", ".", "..") or "/" in name:
        raise ValueError(f"Directory entry must be a single path segment, but was '{name}'.")
    return name

#============================================================
# Directory
#============================================================
def directory_to_bytes(directory:Directory) -> bytes:
    result = bytearray()
    for name in sorted(directory, key=lambda n: n.encode(_STR_ENCODING)):
        result = _write_node(_enforce_segment(name), directory[name], result)
    object_header = _object_header_to_bytes('directory', len(result))
    return bytes(object_header + result)

def bytes_to_directory(data:bytes) -> Directory:
    data = _enforce_and_skip_object_header(data, 'directory')
    result = {}
    while len(data) > 0:
        name, node, data = _read_node(data)
        result[_enforce_segment(name)] = node
    return result

#============================================================
# Action
#============================================================
def action_to_bytes(action:Action) -> bytes:
    result = bytearray()
    result = _write_u32(len(action.arguments), result)
    for argument in action.arguments:
        encoded = _encode_str(argument)
        result = _write_u32(len(encoded), result)
        result += encoded
    environment = action.environment or {}
    for key in sorted(environment):
        if key == "":
            raise ValueError("Environment variable names must not be empty.")
        result += _encode_str(key)
        result += b'\x00'
        result += _encode_str(environment[key])
        result += b'\x00'
    result += b'\x00'
    result = _write_nodes(action.inputs, result)
    outputs = sorted(set(action.outputs))
    result = _write_u32(len(outputs), result)
    for output in outputs:
        result += _encode_str(output)
        result += b'\x00'
    timeout_ms = 0 if action.timeout is None else int(round(action.timeout * 1000))
    result += struct.pack(">Q", timeout_ms)
    object_header = _object_header_to_bytes('action', len(result))
    return bytes(object_header + result)

def bytes_to_action(data:bytes) -> Action:
    data = _enforce_and_skip_object_header(data, 'action')
    count, data = _read_u32(data)
    arguments = []
    for _ in range(count):
        length, data = _read_u32(data)
        argument, data = _split_bytes(data, length)
        arguments.append(argument.decode(_STR_ENCODING))
    environment = {}
    while True:
        key, data = data.split(b'\x00', 1)
        if len(key) == 0:
            break
        value, data = data.split(b'\x00', 1)
        environment[key.decode(_STR_ENCODING)] = value.decode(_STR_ENCODING)
    inputs, data = _read_nodes(data)
    count, data = _read_u32(data)
    outputs = []
    for _ in range(count):
        output, data = data.split(b'\x00', 1)
        outputs.append(output.decode(_STR_ENCODING))
    timeout_bytes, data = _split_bytes(data, 8)
    timeout_ms = struct.unpack(">Q", timeout_bytes)[0]
    return Action(
        arguments,
        inputs,
        outputs,
        environment if len(environment) > 0 else None,
        None if timeout_ms == 0 else timeout_ms / 1000)

#============================================================
# Action Result
#============================================================
def action_result_to_bytes(result:ActionResult) -> bytes:
    body = bytearray()
    body += struct.pack(">i", result.exit_code)
    body += _enforce_digest(result.stdout_digest)
    body += _enforce_digest(result.stderr_digest)
    body = _write_nodes(result.outputs, body)
    object_header = _object_header_to_bytes('result', len(body))
    return bytes(object_header + body)

def bytes_to_action_result(data:bytes) -> ActionResult:
    data = _enforce_and_skip_object_header(data, 'result')
    exit_code_bytes, data = _split_bytes(data, 4)
    stdout_digest, data = _split_bytes(data, _ID_LEN)
    stderr_digest, data = _split_bytes(data, _ID_LEN)
    outputs, data = _read_nodes(data)
    return ActionResult(
        struct.unpack(">i", exit_code_bytes)[0],
        stdout_digest,
        stderr_digest,
        outputs)
