import logging
import uvicorn
from starlette.exceptions import HTTPException
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response, PlainTextResponse
from starlette.routing import Route, Mount
from remex.cas import *

# HTTP/REST front of a cache store, utilizing the Starlette framework (https://www.starlette.io/).
#
# Routes (relative to an optional prefix, e.g. '/hazelcast/rest/maps'):
#   GET|HEAD|PUT /cas/<digest>   blobs, the body is the raw content
#   GET|HEAD|PUT /ac/<digest>    action results, the body is the canonical ActionResult encoding
#
# Status codes: 404 missing, 400 malformed digest/namespace/body,
# 409 content does not match the digest (an upload that hashes wrong, or a stored blob that got corrupted).

logger = logging.getLogger(__name__)

_OCTET_STREAM = "application/octet-stream"

class RestCacheServer:
    __NAMESPACE_PARAM = "namespace"
    __DIGEST_PARAM = "digest"

    def __init__(self, store:CacheStore, prefix:str|None=None):
        self.store = store
        self.prefix = (prefix or "").rstrip("/")
        self.server = None

    def app(self) -> Starlette:
        routes = [
            Route('/', self.get_root),
            Route(f"/{{{self.__NAMESPACE_PARAM}}}/{{{self.__DIGEST_PARAM}}}", self.get_entry, methods=['GET', 'HEAD']),
            Route(f"/{{{self.__NAMESPACE_PARAM}}}/{{{self.__DIGEST_PARAM}}}", self.put_entry, methods=['PUT']),
        ]
        if self.prefix:
            routes = [Mount(self.prefix, routes=routes)]
        return Starlette(routes=routes)

    async def run(self, port:int=8080, host:str="0.0.0.0"):
        config = uvicorn.Config(app=self.app(), loop="asyncio", host=host, port=port, log_level="info")
        self.server = uvicorn.Server(config)
        logger.info(f"REST Cache Server starting on port {port} (prefix '{self.prefix or '/'}')")
        await self.server.serve()

    def stop(self):
        if(self.server is not None):
            self.server.should_exit = True

    #=========================
    # Route handlers
    #=========================
    async def get_root(self, request:Request):
        return PlainTextResponse('remex cache')

    async def get_entry(self, request:Request):
        namespace = self.__validate_namespace(request)
        digest = self.__validate_digest(request)
        if namespace == CAS_NAMESPACE:
            if request.method == "HEAD":
                found = await self.store.has(digest)
                return Response(status_code=200 if found else 404)
            try:
                data = await self.store.get(digest)
            except CorruptionError as e:
                logger.error(f"Refusing to serve corrupt blob: {e}")
                raise HTTPException(status_code=409, detail=str(e))
            if data is None:
                raise HTTPException(status_code=404, detail=f"Blob ({digest.hex()}) not found")
            return Response(data, media_type=_OCTET_STREAM)
        else:
            result = await self.store.get_action_result(digest)
            if result is None:
                raise HTTPException(status_code=404, detail=f"Action result ({digest.hex()}) not found")
            if request.method == "HEAD":
                return Response(status_code=200)
            return Response(action_result_to_bytes(result), media_type=_OCTET_STREAM)

    async def put_entry(self, request:Request):
        namespace = self.__validate_namespace(request)
        digest = self.__validate_digest(request)
        body = await request.body()
        if namespace == CAS_NAMESPACE:
            try:
                await self.store.put(digest, body)
            except CorruptionError as e:
                raise HTTPException(status_code=409, detail=str(e))
        else:
            try:
                result = bytes_to_action_result(body)
            except (ValueError, TypeError, UnicodeDecodeError) as e:
                raise HTTPException(status_code=400, detail=f"Body is not an encoded action result: {e}")
            await self.store.put_action_result(digest, result)
        return Response(status_code=200)

    def __validate_namespace(self, request:Request) -> str:
        namespace = request.path_params[self.__NAMESPACE_PARAM]
        if namespace not in (CAS_NAMESPACE, AC_NAMESPACE):
            raise HTTPException(status_code=400, detail=f"Unknown namespace '{namespace}', expected '{CAS_NAMESPACE}' or '{AC_NAMESPACE}'")
        return namespace

    def __validate_digest(self, request:Request) -> Digest:
        digest_str = request.path_params[self.__DIGEST_PARAM]
        if not is_digest_str(digest_str):
            raise HTTPException(status_code=400, detail=f"Invalid digest ({digest_str})")
        return to_digest(digest_str.lower())
