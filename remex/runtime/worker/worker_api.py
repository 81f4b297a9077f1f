from typing import NamedTuple
import grpc
from remex.cas.object_model import *
from remex.cas.object_serialization import action_to_bytes, bytes_to_action, action_result_to_bytes, bytes_to_action_result
from remex.runtime.store.cache_api import frame, unframe

# Messages, client stub, and servicer base of the 'remex.Execution' gRPC service.

EXECUTION_SERVICE_NAME = "remex.Execution"

ExecuteRequest = NamedTuple("ExecuteRequest",
    [('action', Action),
     ('skip_cache_lookup', bool)])

def encode_execute_request(message:ExecuteRequest) -> bytes:
    body = bytearray(b'\x01' if message.skip_cache_lookup else b'\x00')
    body += action_to_bytes(message.action)
    return frame('execute', body)

def decode_execute_request(data:bytes) -> ExecuteRequest:
    body = unframe(data, 'execute')
    return ExecuteRequest(bytes_to_action(body[1:]), body[:1] == b'\x01')


class ExecutionStub:
    def __init__(self, channel):
        self.Execute = channel.unary_unary(
            f"/{EXECUTION_SERVICE_NAME}/Execute",
            request_serializer=encode_execute_request,
            response_deserializer=bytes_to_action_result)


class ExecutionServicer:
    async def Execute(self, request:ExecuteRequest, context) -> ActionResult:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented!")


def add_ExecutionServicer_to_server(servicer:ExecutionServicer, server:grpc.aio.Server):
    rpc_method_handlers = {
        'Execute': grpc.unary_unary_rpc_method_handler(
            servicer.Execute,
            request_deserializer=decode_execute_request,
            response_serializer=action_result_to_bytes),
    }
    generic_handler = grpc.method_handlers_generic_handler(EXECUTION_SERVICE_NAME, rpc_method_handlers)
    server.add_generic_rpc_handlers((generic_handler,))
