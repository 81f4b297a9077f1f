from typing import NamedTuple

# Type aliases and structures that define the object model of the remex cache.

Digest = bytes #32 bytes, sha256 of the bytes of a blob or of an encoded object

BlobDigest = Digest
TreeDigest = Digest # digest of an encoded Directory
ActionDigest = Digest

FileNode = NamedTuple("FileNode",
    [('digest', BlobDigest),
     ('executable', bool)])

# the target is opaque data, it is never resolved or rewritten
SymlinkNode = NamedTuple("SymlinkNode",
    [('target', str)])

DirectoryNode = NamedTuple("DirectoryNode",
    [('digest', TreeDigest)])

Node = FileNode | SymlinkNode | DirectoryNode

Directory = dict[str, Node] # a directory key must be a single path segment

Action = NamedTuple("Action",
    [('arguments', list[str]),
     ('inputs', dict[str, Node]), # relative path -> node
     ('outputs', list[str]), # relative paths, files or directories
     ('environment', dict[str, str] | None),
     ('timeout', float | None)]) # seconds

ActionResult = NamedTuple("ActionResult",
    [('exit_code', int),
     ('stdout_digest', BlobDigest),
     ('stderr_digest', BlobDigest),
     ('outputs', dict[str, Node])]) # declared output path -> node

# a directory tree read from disk, together with every blob needed to rebuild it
Tree = NamedTuple("Tree",
    [('root', TreeDigest),
     ('blobs', dict[Digest, bytes])])

CAS_NAMESPACE = "cas"
AC_NAMESPACE = "ac"
