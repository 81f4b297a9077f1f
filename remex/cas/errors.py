import grpc

# Transport independent error vocabulary.
# Every adapter (gRPC, REST, local) translates its own failures into one of these kinds,
# so that the worker, the stores, and the build session never see transport specific errors.

class RemexError(Exception):
    kind = "error"
    grpc_code = grpc.StatusCode.INTERNAL

    def __init__(self, message:str, action_digest:bytes|None=None):
        super().__init__(message)
        self.message = message
        self.action_digest = action_digest

    def __str__(self) -> str:
        if self.action_digest is not None:
            return f"{self.message} (action {self.action_digest.hex()})"
        return self.message

class NotFoundError(RemexError):
    """Digest absent from the store. Always recoverable, triggers re-execution."""
    kind = "not_found"
    grpc_code = grpc.StatusCode.NOT_FOUND

class CorruptionError(RemexError):
    """Content does not hash to the digest it is stored or requested under."""
    kind = "corruption"
    grpc_code = grpc.StatusCode.DATA_LOSS

class MissingInputError(RemexError):
    kind = "missing_input"
    grpc_code = grpc.StatusCode.FAILED_PRECONDITION

    def __init__(self, message:str, action_digest:bytes|None=None, missing:list[bytes]|None=None):
        super().__init__(message, action_digest)
        self.missing = missing or []

class MissingOutputError(RemexError):
    kind = "missing_output"
    grpc_code = grpc.StatusCode.FAILED_PRECONDITION

class ActionTimeoutError(RemexError):
    kind = "timeout"
    grpc_code = grpc.StatusCode.DEADLINE_EXCEEDED

class TransportUnavailableError(RemexError):
    kind = "unavailable"
    grpc_code = grpc.StatusCode.UNAVAILABLE

class WorkerBusyError(RemexError):
    kind = "busy"
    grpc_code = grpc.StatusCode.RESOURCE_EXHAUSTED

class CapabilityError(RemexError):
    """The target filesystem cannot represent the tree (e.g. no symlink support)."""
    kind = "capability"
    grpc_code = grpc.StatusCode.UNIMPLEMENTED

class ActionFailedError(RemexError):
    """An action could not be executed, neither remotely nor locally."""
    kind = "action_failed"
    grpc_code = grpc.StatusCode.ABORTED


_ERROR_KINDS:dict[str, type[RemexError]] = {cls.kind: cls for cls in [
    NotFoundError,
    CorruptionError,
    MissingInputError,
    MissingOutputError,
    ActionTimeoutError,
    TransportUnavailableError,
    WorkerBusyError,
    CapabilityError,
    ActionFailedError,
    ]}

# status codes that mean the endpoint could not be reached or did not answer in time
_UNAVAILABLE_CODES = {
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.CANCELLED,
    grpc.StatusCode.UNKNOWN,
    }

def error_to_details(error:RemexError) -> str:
    """Encodes the error kind into the rpc details string, so clients can map it back."""
    return f"{error.kind}: {error}"

def error_from_rpc(error:grpc.aio.AioRpcError|grpc.RpcError) -> RemexError:
    code = error.code()
    details = error.details() or ""
    kind, sep, message = details.partition(": ")
    if sep and kind in _ERROR_KINDS:
        return _ERROR_KINDS[kind](message)
    if code in _UNAVAILABLE_CODES:
        return TransportUnavailableError(f"rpc failed with {code.name}: {details}")
    if code == grpc.StatusCode.NOT_FOUND:
        return NotFoundError(details)
    if code == grpc.StatusCode.DATA_LOSS:
        return CorruptionError(details)
    if code == grpc.StatusCode.RESOURCE_EXHAUSTED:
        return WorkerBusyError(details)
    # any other status (UNIMPLEMENTED, INTERNAL, ...) means the endpoint is not a usable remex service
    return TransportUnavailableError(f"rpc failed with {code.name}: {details}")

async def abort_rpc(context:grpc.aio.ServicerContext, error:Exception):
    """Aborts the current rpc with the status code that matches the error kind."""
    if isinstance(error, RemexError):
        await context.abort(error.grpc_code, error_to_details(error))
    elif isinstance(error, (ValueError, TypeError)):
        await context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(error))
    else:
        raise error
