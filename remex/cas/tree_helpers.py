import errno
import os
import shutil
import stat
from typing import Iterable
import aiofiles
from . object_model import *
from . object_serialization import *
from . cache_store import BlobLoader, CacheStore
from . errors import NotFoundError, CapabilityError

# Helpers to move directory trees between the file system and a cache store.
#
# Trees are read without ever following symlinks: a symlink becomes a SymlinkNode whose target
# is stored verbatim, so link cycles cannot cause infinite traversals and two trees that only
# differ in a link target get different digests.
# Children are always digested before their parents, the root digest is the digest of the
# encoded root directory.

_EXECUTABLE_MODE = 0o755
_REGULAR_MODE = 0o644
_ASYNC_WRITE_THRESHOLD = 100000
# errors raised by os.symlink when the file system or the platform cannot create links
_NO_SYMLINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.ENOSYS}
_WINDOWS_PRIVILEGE_NOT_HELD = 1314

#============================================================
# Path Helpers
#============================================================
def path_parts(path:str) -> list[str]:
    """Returns the segments of a relative path, rejecting absolute paths and parent references."""
    if path is None or path == "":
        raise ValueError("Path must not be empty.")
    if path.startswith("/") or os.path.isabs(path):
        raise ValueError(f"Path must be relative, but was '{path}'.")
    parts = [part for part in path.replace("\\", "/").split("/") if part not in ("", ".")]
    if len(parts) == 0:
        raise ValueError(f"Path must name an entry, but was '{path}'.")
    if ".." in parts:
        raise ValueError(f"Path must not contain '..', but was '{path}'.")
    return parts

def normalize_path(path:str) -> str:
    return "/".join(path_parts(path))

def join_path(root:str, path:str) -> str:
    return os.path.join(root, *path_parts(path))

#============================================================
# Reading Trees
#============================================================
def read_tree(root_path:str) -> Tree:
    """Reads a directory from disk and returns its digest plus every blob needed to rebuild it."""
    blobs:dict[Digest, bytes] = {}
    root = _read_directory(root_path, blobs)
    return Tree(root, blobs)

def digest_tree(root_path:str) -> TreeDigest:
    return read_tree(root_path).root

def read_node(path:str) -> tuple[Node, dict[Digest, bytes]]:
    """Reads a single file, symlink, or directory and returns its node and blobs."""
    blobs:dict[Digest, bytes] = {}
    node = _read_entry(path, blobs)
    return node, blobs

def _read_directory(path:str, blobs:dict[Digest, bytes]) -> TreeDigest:
    directory:Directory = {}
    with os.scandir(path) as entries:
        for entry in entries:
            directory[entry.name] = _read_entry(entry.path, blobs)
    data = directory_to_bytes(directory)
    digest = get_digest(data)
    blobs[digest] = data
    return digest

def _read_entry(path:str, blobs:dict[Digest, bytes]) -> Node:
    st = os.lstat(path)
    if stat.S_ISLNK(st.st_mode):
        return SymlinkNode(os.readlink(path))
    if stat.S_ISDIR(st.st_mode):
        return DirectoryNode(_read_directory(path, blobs))
    if stat.S_ISREG(st.st_mode):
        with open(path, 'rb') as f:
            data = f.read()
        digest = get_digest(data)
        blobs[digest] = data
        return FileNode(digest, bool(st.st_mode & stat.S_IXUSR))
    raise ValueError(f"Unsupported file type at '{path}' (mode {oct(st.st_mode)}).")

#============================================================
# Store Helpers
#============================================================
async def store_tree(store:CacheStore, tree:Tree) -> TreeDigest:
    missing = set(await store.find_missing(tree.blobs.keys()))
    for digest in missing:
        await store.put(digest, tree.blobs[digest])
    return tree.root

async def load_directory(loader:BlobLoader, digest:TreeDigest) -> Directory:
    data = await loader.get(digest)
    if data is None:
        raise NotFoundError(f"Directory '{digest.hex()}' not found.")
    return bytes_to_directory(data)

async def find_missing_blobs(store:CacheStore, nodes:Iterable[Node]) -> list[Digest]:
    """Returns the digests of all blobs reachable from the nodes that are not in the store."""
    missing:list[Digest] = []
    pending = list(nodes)
    while len(pending) > 0:
        directory_nodes = [node for node in pending if is_directory_node(node)]
        digests = [node.digest for node in pending if is_file_node(node) or is_directory_node(node)]
        level_missing = await store.find_missing(digests)
        missing.extend(level_missing)
        pending = []
        for node in directory_nodes:
            if node.digest in level_missing:
                continue
            directory = await load_directory(store, node.digest)
            pending.extend(directory.values())
    return list(dict.fromkeys(missing))

async def copy_blobs(source:BlobLoader, target:CacheStore, nodes:Iterable[Node]) -> int:
    """Copies every blob reachable from the nodes that the target does not have yet. Returns the number of copied blobs."""
    copied = 0
    pending = list(nodes)
    while len(pending) > 0:
        directory_nodes = [node for node in pending if is_directory_node(node)]
        digests = [node.digest for node in pending if is_file_node(node) or is_directory_node(node)]
        pending = []
        for digest in await target.find_missing(digests):
            data = await source.get(digest)
            if data is None:
                raise NotFoundError(f"Blob '{digest.hex()}' not found in source store.")
            await target.put(digest, data)
            copied += 1
        for node in directory_nodes:
            directory = await load_directory(source, node.digest)
            pending.extend(directory.values())
    return copied

#============================================================
# Materializing Trees
#============================================================
async def materialize(loader:BlobLoader, tree_digest:TreeDigest, dest_dir:str) -> str:
    """Recreates the tree under dest_dir, which must not exist or be empty.

    If anything fails, the entries written so far are removed and the error is raised,
    so the destination never looks like a complete copy of the tree.
    """
    created = not os.path.exists(dest_dir)
    if not created and len(os.listdir(dest_dir)) > 0:
        raise ValueError(f"Destination '{dest_dir}' must be empty.")
    os.makedirs(dest_dir, exist_ok=True)
    try:
        await _materialize_directory(loader, tree_digest, dest_dir)
    except BaseException:
        _remove_partial(dest_dir, created)
        raise
    return dest_dir

async def materialize_node(loader:BlobLoader, node:Node, dest_path:str) -> str:
    """Writes a single node (file, symlink, or directory) to dest_path, which must not exist yet."""
    if os.path.lexists(dest_path):
        raise ValueError(f"Destination '{dest_path}' already exists.")
    parent = os.path.dirname(dest_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    if is_directory_node(node):
        return await materialize(loader, node.digest, dest_path)
    try:
        await _materialize_entry(loader, node, dest_path)
    except BaseException:
        if os.path.lexists(dest_path):
            os.remove(dest_path)
        raise
    return dest_path

async def _materialize_directory(loader:BlobLoader, digest:TreeDigest, path:str):
    directory = await load_directory(loader, digest)
    for name, node in directory.items():
        child_path = os.path.join(path, name)
        if is_directory_node(node):
            os.mkdir(child_path)
            await _materialize_directory(loader, node.digest, child_path)
        else:
            await _materialize_entry(loader, node, child_path)

async def _materialize_entry(loader:BlobLoader, node:Node, path:str):
    if is_symlink_node(node):
        _create_symlink(node.target, path)
    elif is_file_node(node):
        data = await loader.get(node.digest)
        if data is None:
            raise NotFoundError(f"Blob '{node.digest.hex()}' for '{path}' not found.")
        await _write_file(path, data, node.executable)
    else:
        raise TypeError(f"Unknown node type {type(node)}")

def _create_symlink(target:str, path:str):
    try:
        os.symlink(target, path)
    except NotImplementedError as e:
        raise CapabilityError(f"Platform does not support symlinks, cannot create '{path}'.") from e
    except OSError as e:
        if e.errno in _NO_SYMLINK_ERRNOS or getattr(e, 'winerror', None) == _WINDOWS_PRIVILEGE_NOT_HELD:
            raise CapabilityError(f"File system does not support symlinks, cannot create '{path}': {e}") from e
        raise

async def _write_file(path:str, data:bytes, executable:bool):
    if len(data) > _ASYNC_WRITE_THRESHOLD:
        async with aiofiles.open(path, 'wb') as f:
            await f.write(data)
    else:
        with open(path, 'wb') as f:
            f.write(data)
    os.chmod(path, _EXECUTABLE_MODE if executable else _REGULAR_MODE)

def _remove_partial(dest_dir:str, created:bool):
    if created:
        shutil.rmtree(dest_dir, ignore_errors=True)
        return
    for name in os.listdir(dest_dir):
        child = os.path.join(dest_dir, name)
        if os.path.isdir(child) and not os.path.islink(child):
            shutil.rmtree(child, ignore_errors=True)
        else:
            os.remove(child)
