from . object_model import *
from . cache_store import BlobLoader, CacheStore, verify_blob
from . object_serialization import (get_digest, is_digest, is_digest_str, is_digest_match, to_digest_str, to_digest,
                                    is_file_node, is_symlink_node, is_directory_node, peek_object_kind,
                                    directory_to_bytes, bytes_to_directory, action_to_bytes, bytes_to_action,
                                    action_result_to_bytes, bytes_to_action_result, get_directory_digest, get_action_digest)
from . errors import (RemexError, NotFoundError, CorruptionError, MissingInputError, MissingOutputError, ActionTimeoutError,
                      TransportUnavailableError, WorkerBusyError, CapabilityError, ActionFailedError)
from . tree_helpers import (path_parts, normalize_path, join_path, read_tree, digest_tree, read_node, store_tree, load_directory,
                            find_missing_blobs, copy_blobs, materialize, materialize_node)
