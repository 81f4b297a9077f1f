import httpx
from remex.cas import *

import logging
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

class RestCacheStore(CacheStore):
    """A cache store on top of a REST cache ('GET|HEAD|PUT <base_url>/<namespace>/<digest>').

    A 404 is a plain miss and a 409 (on upload or download) is a CorruptionError.
    Every other failure becomes a TransportUnavailableError.
    """
    def __init__(self, base_url:str, timeout_seconds:float=DEFAULT_TIMEOUT_SECONDS, transport:httpx.AsyncBaseTransport|None=None):
        super().__init__()
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport)

    @property
    def address(self) -> str:
        return self.base_url

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def put(self, digest:Digest, data:bytes) -> None:
        verify_blob(digest, data)
        await self._put(CAS_NAMESPACE, digest, data)

    async def get(self, digest:Digest) -> bytes | None:
        response = await self._request("GET", CAS_NAMESPACE, digest)
        if response.status_code == 404:
            return None
        if response.status_code == 409:
            raise CorruptionError(f"Cache at {self.base_url} holds a corrupt copy of '{digest.hex()}': {response.text}")
        return verify_blob(digest, response.content)

    async def has(self, digest:Digest) -> bool:
        response = await self._request("HEAD", CAS_NAMESPACE, digest)
        return response.status_code != 404

    async def get_action_result(self, action_digest:ActionDigest) -> ActionResult | None:
        response = await self._request("GET", AC_NAMESPACE, action_digest)
        if response.status_code == 404:
            return None
        try:
            return bytes_to_action_result(response.content)
        except (ValueError, TypeError, UnicodeDecodeError) as e:
            raise CorruptionError(f"Action result ({action_digest.hex()}) from {self.base_url} is malformed: {e}") from e

    async def put_action_result(self, action_digest:ActionDigest, result:ActionResult) -> None:
        await self._put(AC_NAMESPACE, action_digest, action_result_to_bytes(result))

    async def close(self) -> None:
        await self._client.aclose()

    async def _put(self, namespace:str, digest:Digest, data:bytes):
        response = await self._request("PUT", namespace, digest, content=data)
        if response.status_code == 409:
            raise CorruptionError(f"Cache at {self.base_url} rejected '{digest.hex()}': {response.text}")

    async def _request(self, method:str, namespace:str, digest:Digest, content:bytes|None=None) -> httpx.Response:
        url = f"{namespace}/{to_digest_str(digest)}"
        try:
            response = await self._client.request(method, url, content=content)
        except httpx.TransportError as e:
            raise TransportUnavailableError(f"{method} {self.base_url} failed: {type(e).__name__}: {e}") from e
        if response.status_code == 404 or response.status_code == 409 or response.is_success:
            return response
        # any other status means the endpoint cannot serve as a cache
        raise TransportUnavailableError(f"{method} {url} on {self.base_url} returned HTTP {response.status_code}: {response.text}")
