import struct
from typing import NamedTuple
import grpc
from google.protobuf import empty_pb2
from remex.cas.object_model import *
from remex.cas.object_serialization import action_result_to_bytes, bytes_to_action_result, is_digest

# Messages, client stub, and servicer base of the 'remex.Cache' gRPC service.
#
# The service is registered through a generic handler, and its messages are encoded with the
# same "<kind> <length>\0<body>" framing that is used for directories and actions.
# Action results travel in their canonical encoding, so what is stored is exactly what was sent.

CACHE_SERVICE_NAME = "remex.Cache"
# blobs above this size are sent with the streaming Write/Read calls instead of the batch calls
# (gRPC's default message limit is 4 MB)
MAX_BATCH_BYTES = 2*1024*1024
CHUNK_SIZE = 1024*1024

_HEADER_ENCODING = 'ascii'
_ID_LEN = 32

FindMissingBlobsRequest = NamedTuple("FindMissingBlobsRequest", [('digests', list[Digest])])
FindMissingBlobsResponse = NamedTuple("FindMissingBlobsResponse", [('missing', list[Digest])])
BatchUpdateBlobsRequest = NamedTuple("BatchUpdateBlobsRequest", [('blobs', dict[Digest, bytes])])
BatchReadBlobsRequest = NamedTuple("BatchReadBlobsRequest", [('digests', list[Digest])])
BatchReadBlobsResponse = NamedTuple("BatchReadBlobsResponse", [('blobs', dict[Digest, bytes])]) # missing blobs are left out
GetActionResultRequest = NamedTuple("GetActionResultRequest", [('action_digest', ActionDigest)])
UpdateActionResultRequest = NamedTuple("UpdateActionResultRequest",
    [('action_digest', ActionDigest),
     ('result', ActionResult)])
WriteRequest = NamedTuple("WriteRequest",
    [('digest', Digest),
     ('offset', int),
     ('data', bytes),
     ('finish_write', bool)])
WriteResponse = NamedTuple("WriteResponse", [('committed_size', int)])
ReadRequest = NamedTuple("ReadRequest", [('digest', Digest)])
ReadResponse = NamedTuple("ReadResponse", [('data', bytes)])

#============================================================
# Encoding Helpers
#============================================================
def frame(kind:str, body:bytes | bytearray) -> bytes:
    return f"{kind} {len(body)}\x00".encode(_HEADER_ENCODING) + bytes(body)

def unframe(data:bytes, expected_kind:str) -> bytes:
    header, body = bytes(data).split(b'\x00', 1)
    kind, length_str = header.decode(_HEADER_ENCODING).split(' ')
    if kind != expected_kind:
        raise TypeError(f"Expected {expected_kind} but got {kind}")
    if len(body) != int(length_str):
        raise ValueError(f"Expected message body of {length_str} bytes but got {len(body)}")
    return body

def write_digest(digest:Digest, result:bytearray) -> bytearray:
    if not is_digest(digest):
        raise ValueError(f"Expected a digest of {_ID_LEN} bytes, got {type(digest)}")
    result += digest
    return result

def read_digest(data:bytes) -> tuple[Digest, bytes]:
    if len(data) < _ID_LEN:
        raise ValueError(f"Expected a digest of {_ID_LEN} bytes, got {len(data)}")
    return bytes(data[:_ID_LEN]), data[_ID_LEN:]

def write_uint(value:int, result:bytearray) -> bytearray:
    result += struct.pack(">Q", value)
    return result

def read_uint(data:bytes) -> tuple[int, bytes]:
    if len(data) < 8:
        raise ValueError(f"Expected 8 bytes, got {len(data)}")
    return struct.unpack(">Q", data[:8])[0], data[8:]

def _encode_digests(kind:str, digests:list[Digest]) -> bytes:
    body = write_uint(len(digests), bytearray())
    for digest in digests:
        body = write_digest(digest, body)
    return frame(kind, body)

def _decode_digests(data:bytes, kind:str) -> list[Digest]:
    count, body = read_uint(unframe(data, kind))
    digests = []
    for _ in range(count):
        digest, body = read_digest(body)
        digests.append(digest)
    return digests

def _encode_blobs(kind:str, blobs:dict[Digest, bytes]) -> bytes:
    body = write_uint(len(blobs), bytearray())
    for digest, blob in blobs.items():
        body = write_digest(digest, body)
        body = write_uint(len(blob), body)
        body += blob
    return frame(kind, body)

def _decode_blobs(data:bytes, kind:str) -> dict[Digest, bytes]:
    count, body = read_uint(unframe(data, kind))
    blobs = {}
    for _ in range(count):
        digest, body = read_digest(body)
        length, body = read_uint(body)
        if len(body) < length:
            raise ValueError(f"Expected blob of {length} bytes, got {len(body)}")
        blobs[digest] = bytes(body[:length])
        body = body[length:]
    return blobs

#============================================================
# Message Serializers
#============================================================
def encode_find_missing_request(message:FindMissingBlobsRequest) -> bytes:
    return _encode_digests('find_missing', message.digests)

def decode_find_missing_request(data:bytes) -> FindMissingBlobsRequest:
    return FindMissingBlobsRequest(_decode_digests(data, 'find_missing'))

def encode_find_missing_response(message:FindMissingBlobsResponse) -> bytes:
    return _encode_digests('missing', message.missing)

def decode_find_missing_response(data:bytes) -> FindMissingBlobsResponse:
    return FindMissingBlobsResponse(_decode_digests(data, 'missing'))

def encode_batch_update_request(message:BatchUpdateBlobsRequest) -> bytes:
    return _encode_blobs('batch_update', message.blobs)

def decode_batch_update_request(data:bytes) -> BatchUpdateBlobsRequest:
    return BatchUpdateBlobsRequest(_decode_blobs(data, 'batch_update'))

def encode_batch_read_request(message:BatchReadBlobsRequest) -> bytes:
    return _encode_digests('batch_read', message.digests)

def decode_batch_read_request(data:bytes) -> BatchReadBlobsRequest:
    return BatchReadBlobsRequest(_decode_digests(data, 'batch_read'))

def encode_batch_read_response(message:BatchReadBlobsResponse) -> bytes:
    return _encode_blobs('blobs', message.blobs)

def decode_batch_read_response(data:bytes) -> BatchReadBlobsResponse:
    return BatchReadBlobsResponse(_decode_blobs(data, 'blobs'))

def encode_get_action_result_request(message:GetActionResultRequest) -> bytes:
    return frame('get_result', write_digest(message.action_digest, bytearray()))

def decode_get_action_result_request(data:bytes) -> GetActionResultRequest:
    digest, _ = read_digest(unframe(data, 'get_result'))
    return GetActionResultRequest(digest)

def encode_update_action_result_request(message:UpdateActionResultRequest) -> bytes:
    body = write_digest(message.action_digest, bytearray())
    body += action_result_to_bytes(message.result)
    return frame('update_result', body)

def decode_update_action_result_request(data:bytes) -> UpdateActionResultRequest:
    digest, body = read_digest(unframe(data, 'update_result'))
    return UpdateActionResultRequest(digest, bytes_to_action_result(body))

def encode_write_request(message:WriteRequest) -> bytes:
    body = write_digest(message.digest, bytearray())
    body = write_uint(message.offset, body)
    body += b'\x01' if message.finish_write else b'\x00'
    body += message.data
    return frame('write', body)

def decode_write_request(data:bytes) -> WriteRequest:
    digest, body = read_digest(unframe(data, 'write'))
    offset, body = read_uint(body)
    finish_write = body[:1] == b'\x01'
    return WriteRequest(digest, offset, bytes(body[1:]), finish_write)

def encode_write_response(message:WriteResponse) -> bytes:
    return frame('written', write_uint(message.committed_size, bytearray()))

def decode_write_response(data:bytes) -> WriteResponse:
    committed_size, _ = read_uint(unframe(data, 'written'))
    return WriteResponse(committed_size)

def encode_read_request(message:ReadRequest) -> bytes:
    return frame('read', write_digest(message.digest, bytearray()))

def decode_read_request(data:bytes) -> ReadRequest:
    digest, _ = read_digest(unframe(data, 'read'))
    return ReadRequest(digest)

def encode_read_response(message:ReadResponse) -> bytes:
    return frame('chunk', message.data)

def decode_read_response(data:bytes) -> ReadResponse:
    return ReadResponse(unframe(data, 'chunk'))

#============================================================
# Stub and Servicer
#============================================================
class CacheStub:
    """Client side of the 'remex.Cache' service, works on sync and aio channels."""
    def __init__(self, channel):
        self.FindMissingBlobs = channel.unary_unary(
            f"/{CACHE_SERVICE_NAME}/FindMissingBlobs",
            request_serializer=encode_find_missing_request,
            response_deserializer=decode_find_missing_response)
        self.BatchUpdateBlobs = channel.unary_unary(
            f"/{CACHE_SERVICE_NAME}/BatchUpdateBlobs",
            request_serializer=encode_batch_update_request,
            response_deserializer=empty_pb2.Empty.FromString)
        self.BatchReadBlobs = channel.unary_unary(
            f"/{CACHE_SERVICE_NAME}/BatchReadBlobs",
            request_serializer=encode_batch_read_request,
            response_deserializer=decode_batch_read_response)
        self.GetActionResult = channel.unary_unary(
            f"/{CACHE_SERVICE_NAME}/GetActionResult",
            request_serializer=encode_get_action_result_request,
            response_deserializer=bytes_to_action_result)
        self.UpdateActionResult = channel.unary_unary(
            f"/{CACHE_SERVICE_NAME}/UpdateActionResult",
            request_serializer=encode_update_action_result_request,
            response_deserializer=empty_pb2.Empty.FromString)
        self.Write = channel.stream_unary(
            f"/{CACHE_SERVICE_NAME}/Write",
            request_serializer=encode_write_request,
            response_deserializer=decode_write_response)
        self.Read = channel.unary_stream(
            f"/{CACHE_SERVICE_NAME}/Read",
            request_serializer=encode_read_request,
            response_deserializer=decode_read_response)


class CacheServicer:
    """Server side of the 'remex.Cache' service. Subclasses implement the methods as coroutines."""
    async def FindMissingBlobs(self, request:FindMissingBlobsRequest, context) -> FindMissingBlobsResponse:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")

    async def BatchUpdateBlobs(self, request:BatchUpdateBlobsRequest, context) -> empty_pb2.Empty:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")

    async def BatchReadBlobs(self, request:BatchReadBlobsRequest, context) -> BatchReadBlobsResponse:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")

    async def GetActionResult(self, request:GetActionResultRequest, context) -> ActionResult:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")

    async def UpdateActionResult(self, request:UpdateActionResultRequest, context) -> empty_pb2.Empty:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")

    async def Write(self, request_iterator, context) -> WriteResponse:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")

    async def Read(self, request:ReadRequest, context):
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")
        yield


def add_CacheServicer_to_server(servicer:CacheServicer, server:grpc.aio.Server):
    rpc_method_handlers = {
        'FindMissingBlobs': grpc.unary_unary_rpc_method_handler(
            servicer.FindMissingBlobs,
            request_deserializer=decode_find_missing_request,
            response_serializer=encode_find_missing_response),
        'BatchUpdateBlobs': grpc.unary_unary_rpc_method_handler(
            servicer.BatchUpdateBlobs,
            request_deserializer=decode_batch_update_request,
            response_serializer=empty_pb2.Empty.SerializeToString),
        'BatchReadBlobs': grpc.unary_unary_rpc_method_handler(
            servicer.BatchReadBlobs,
            request_deserializer=decode_batch_read_request,
            response_serializer=encode_batch_read_response),
        'GetActionResult': grpc.unary_unary_rpc_method_handler(
            servicer.GetActionResult,
            request_deserializer=decode_get_action_result_request,
            response_serializer=action_result_to_bytes),
        'UpdateActionResult': grpc.unary_unary_rpc_method_handler(
            servicer.UpdateActionResult,
            request_deserializer=decode_update_action_result_request,
            response_serializer=empty_pb2.Empty.SerializeToString),
        'Write': grpc.stream_unary_rpc_method_handler(
            servicer.Write,
            request_deserializer=decode_write_request,
            response_serializer=encode_write_response),
        'Read': grpc.unary_stream_rpc_method_handler(
            servicer.Read,
            request_deserializer=decode_read_request,
            response_serializer=encode_read_response),
    }
    generic_handler = grpc.method_handlers_generic_handler(CACHE_SERVICE_NAME, rpc_method_handlers)
    server.add_generic_rpc_handlers((generic_handler,))
