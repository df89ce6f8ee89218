from __future__ import annotations
import secrets
import time
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import JSONRPC_VERSION


def payload_id() -> int:
    """JSON-RPC id: epoch milliseconds with three random trailing digits."""
    return int(time.time() * 1000) * 1000 + secrets.randbelow(1000)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ClientMeta(WireModel):
    description: str = ""
    url: str = ""
    icons: List[str] = Field(default_factory=list)
    name: str = ""


class SessionData(WireModel):
    approved: bool = False
    chain_id: Optional[int] = None
    network_id: Optional[int] = None
    accounts: Optional[List[str]] = None
    rpc_url: Optional[str] = None
    peer_id: Optional[str] = None
    peer_meta: Optional[ClientMeta] = None


class SessionRequestParams(WireModel):
    peer_id: str
    peer_meta: ClientMeta
    chain_id: Optional[int] = None


class ErrorResponse(WireModel):
    code: Optional[int] = None
    message: str = ""
    data: Any = None


class JsonRpcRequest(WireModel):
    id: int = Field(default_factory=payload_id)
    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: List[Any] = Field(default_factory=list)


class JsonRpcResponse(WireModel):
    id: Optional[int] = None
    jsonrpc: str = JSONRPC_VERSION
    result: Any = None
    error: Optional[ErrorResponse] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class SessionRequestResponse(JsonRpcResponse):
    result: Optional[SessionData] = None


class NetworkMessage(BaseModel):
    topic: str
    type: str = "pub"
    payload: str = ""
    silent: bool = True


class EncryptedPayload(BaseModel):
    data: str
    hmac: str
    iv: str
