from __future__ import annotations
import abc
import asyncio
from typing import Any, Iterable, List, Optional

import structlog

from wcsession.protocol.models import JsonRpcRequest, JsonRpcResponse

from .engine import SessionEngine
from .errors import NotConnectedError, RpcError, RpcTimeout


class RpcClient(abc.ABC):
    @abc.abstractmethod
    async def send_request(self, method: str, params: Optional[List[Any]] = None,
                           timeout: Optional[float] = None) -> Any:
        ...


class SessionRpcClient(RpcClient):
    """Sends JSON-RPC calls to the wallet and waits for the matching response."""

    def __init__(self, engine: SessionEngine, logger=None):
        self.engine = engine
        self.logger = logger or structlog.get_logger()

    @property
    def accounts(self) -> List[str]:
        return list(self.engine.accounts or [])

    async def send_request(self, method: str, params: Optional[List[Any]] = None,
                           timeout: Optional[float] = None) -> Any:
        if not self.engine.connected:
            raise NotConnectedError(f"cannot send {method}: session not connected")

        request = JsonRpcRequest(method=method, params=list(params or []))
        fut = asyncio.get_running_loop().create_future()

        def on_response(response: JsonRpcResponse):
            if not fut.done():
                fut.set_result(response)

        # register before sending so a fast wallet cannot beat us
        listener = self.engine.events.listen_for_response(request.id, on_response, model=JsonRpcResponse)
        try:
            await self.engine.send_request(request)
            self.logger.debug("rpc_sent", method=method, id=request.id)
            if timeout is None:
                response = await fut
            else:
                response = await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            raise RpcTimeout(f"Request timeout for {method}") from None
        finally:
            self.engine.events.remove(listener)

        if response.is_error:
            raise RpcError(response.error.message, response.error.code, response.error.data)
        return response.result


class FallbackProvider(RpcClient):
    """Routes signing methods to the wallet session, everything else elsewhere."""

    def __init__(self, signer: RpcClient, fallback: RpcClient, signing_methods: Optional[Iterable[str]] = None):
        self.signer = signer
        self.fallback = fallback
        if signing_methods is None:
            engine = getattr(signer, "engine", None)
            signing_methods = engine.config.signing_methods if engine is not None else ()
        self.signing_methods = frozenset(signing_methods)

    def route(self, method: str) -> RpcClient:
        return self.signer if method in self.signing_methods else self.fallback

    async def send_request(self, method: str, params: Optional[List[Any]] = None,
                           timeout: Optional[float] = None) -> Any:
        params = self._normalize(method, list(params or []))
        return await self.route(method).send_request(method, params, timeout=timeout)

    def _normalize(self, method: str, params: List[Any]) -> List[Any]:
        if method == "eth_feeHistory" and len(params) >= 3 and params[2] is None:
            params[2] = []

        if method == "eth_sendTransaction" and params and isinstance(params[0], dict):
            tx = params[0]
            accounts = getattr(self.signer, "accounts", None)
            if tx.get("from") is None and accounts:
                params[0] = {**tx, "from": accounts[0]}
        return params
