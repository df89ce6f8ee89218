"""Wire encoding for JSON-RPC traffic and the bridge envelope."""
from __future__ import annotations
from typing import Any, Dict, Iterable, Mapping, Optional, Union
from urllib.parse import quote_plus

from pydantic import BaseModel, ValidationError as ModelValidationError

from .constants import PROTO_NAME, RESPONSE_EVENT_PREFIX, WC_METHOD_PREFIX
from .models import EncryptedPayload, JsonRpcRequest, NetworkMessage, payload_id
from .validation import json_dumps_compact, json_object_loads
from wcsession.client.errors import ProtocolError

__all__ = [
    "payload_id", "dumps", "loads_message", "event_name", "response_event",
    "encode_network_message", "decode_network_message", "encode_encrypted_payload",
    "decode_encrypted_payload", "is_silent", "build_uri",
]

Payload = Union[BaseModel, Mapping[str, Any]]


def dumps(obj: Payload) -> str:
    if isinstance(obj, BaseModel):
        data = obj.model_dump(by_alias=True, mode="json")
    else:
        data = dict(obj)
    return json_dumps_compact(data)


def loads_message(raw: str) -> Dict[str, Any]:
    try:
        return json_object_loads(raw)
    except ValueError as e:
        raise ProtocolError(f"malformed JSON-RPC message: {e}") from e


def response_event(request_id: Any) -> str:
    return f"{RESPONSE_EVENT_PREFIX}{request_id}"


def event_name(message: Mapping[str, Any]) -> Optional[str]:
    """Name under which an inbound message is dispatched.

    Requests dispatch by method; responses by ``response:<id>``.
    Anything else carries no event.
    """
    method = message.get("method")
    if isinstance(method, str) and method:
        return method
    if message.get("id") is not None and ("result" in message or "error" in message):
        return response_event(message["id"])
    return None


def encode_network_message(message: NetworkMessage) -> str:
    return json_dumps_compact(message.model_dump())


def decode_network_message(raw: str) -> NetworkMessage:
    try:
        return NetworkMessage.model_validate(json_object_loads(raw))
    except (ValueError, ModelValidationError) as e:
        raise ProtocolError(f"malformed network message: {e}") from e


def encode_encrypted_payload(payload: EncryptedPayload) -> str:
    return json_dumps_compact(payload.model_dump())


def decode_encrypted_payload(raw: str) -> EncryptedPayload:
    try:
        return EncryptedPayload.model_validate(json_object_loads(raw))
    except (ValueError, ModelValidationError) as e:
        raise ProtocolError(f"malformed encrypted payload: {e}") from e


def is_silent(request: Payload, signing_methods: Iterable[str]) -> bool:
    if isinstance(request, JsonRpcRequest):
        method = request.method
    elif isinstance(request, Mapping):
        method = request.get("method")
    else:
        method = None
    if not isinstance(method, str):
        return False
    return method.startswith(WC_METHOD_PREFIX) or method not in signing_methods


def build_uri(handshake_topic: str, version: str, bridge_url: str, key_hex: str) -> str:
    def enc(v: str) -> str:
        return quote_plus(v, safe="")
    return f"{PROTO_NAME}:{enc(handshake_topic)}@{enc(version)}?bridge={enc(bridge_url)}&key={enc(key_hex)}"
