import grpc

import logging
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

class BaseClient:
    """Owns one aio gRPC channel. Every call made through it is bounded by timeout_seconds."""
    def __init__(self, server_address:str, timeout_seconds:float=DEFAULT_TIMEOUT_SECONDS):
        self.server_address = server_address
        self.timeout_seconds = timeout_seconds
        self._closed = False
        self.channel_async = grpc.aio.insecure_channel(
            self.server_address,
            options=[
                # never keep a connection alive just for the sake of it, the build session closes it
                ("grpc.keepalive_permit_without_calls", 0),
                ("grpc.max_receive_message_length", 8*1024*1024),
                ("grpc.max_send_message_length", 8*1024*1024),
            ])

    @property
    def address(self) -> str:
        return self.server_address

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self, grace_period:float=1.0):
        if self._closed:
            return
        self._closed = True
        await self.channel_async.close(grace_period)
        logger.debug(f"{type(self).__name__}: closed channel to {self.server_address}")
