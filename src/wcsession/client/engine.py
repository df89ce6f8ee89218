from __future__ import annotations
import asyncio
import secrets
import time
import uuid
from typing import Any, List, Mapping, Optional, Union

import structlog
from pydantic import ValidationError as ModelValidationError

from wcsession.crypto.cipher import AESCipher, Cipher
from wcsession.crypto.primitives import random_key
from wcsession.protocol.codec import (
    build_uri, decode_encrypted_payload, dumps, encode_encrypted_payload,
    event_name, is_silent, loads_message, response_event, Payload,
)
from wcsession.protocol.config import DEFAULT_CONFIG, SessionConfig
from wcsession.protocol.constants import (
    DEFAULT_CHAIN_ID, DEFAULT_DISCONNECT_MESSAGE, EVENT_CONNECT, EVENT_DISCONNECT,
    EVENT_SESSION_FAILED, EVENT_SESSION_UPDATE, KEY_BYTES, MALFORMED_SESSION, NOT_APPROVED,
    REJECTION_MESSAGES, SESSION_CLOSED, WC_SESSION_REQUEST, WC_SESSION_UPDATE,
)
from wcsession.protocol.models import (
    ClientMeta, ErrorResponse, JsonRpcRequest, NetworkMessage, SessionData,
    SessionRequestParams, SessionRequestResponse,
)
from wcsession.protocol.phases import Phase

from .errors import (
    CipherError, NotConnectedError, ProtocolError, SessionFailed, SessionRejected,
    SessionStateError, TransportError, ValidationError,
)
from .events import Completion, Event, EventDelegator, Listener
from .state import SessionState
from .transport import Transport, WebSocketTransport


def validate_client_meta(meta: Union[ClientMeta, Mapping[str, Any], None]) -> ClientMeta:
    if meta is None:
        raise ValidationError("client_meta cannot be None")
    if not isinstance(meta, ClientMeta):
        try:
            meta = ClientMeta.model_validate(dict(meta))
        except (TypeError, ValueError, ModelValidationError) as e:
            raise ValidationError(f"client_meta is malformed: {e}") from e

    if not meta.description or not meta.description.strip():
        raise ValidationError("client_meta must include a valid description")
    if not meta.name or not meta.name.strip():
        raise ValidationError("client_meta must include a valid name")
    if not meta.url or not meta.url.strip():
        raise ValidationError("client_meta must include a valid url")
    if not meta.icons or not any(i and i.strip() for i in meta.icons):
        raise ValidationError(
            "client_meta must include at least one icon URL the wallet can display"
        )
    return meta


def normalize_bridge_url(url: str) -> str:
    if url.startswith("https"):
        return "wss" + url[len("https"):]
    if url.startswith("http"):
        return "ws" + url[len("http"):]
    return url


class SessionEngine:
    """Dapp side of an encrypted session relayed through a bridge.

    Construction is offline: it fixes the session key and the handshake
    topic, which together form :attr:`uri`. :meth:`connect` then opens the
    transport and waits for the wallet to answer the handshake.
    """

    def __init__(
        self,
        client_meta: Union[ClientMeta, Mapping[str, Any]],
        transport: Optional[Transport] = None,
        cipher: Optional[Cipher] = None,
        chain_id: Optional[int] = DEFAULT_CHAIN_ID,
        bridge_url: Optional[str] = None,
        config: Optional[SessionConfig] = None,
        events: Optional[EventDelegator] = None,
        logger=None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.logger = logger or structlog.get_logger()
        self.client_meta = validate_client_meta(client_meta)

        if bridge_url is None:
            bridge_url = secrets.choice(self.config.bridges)
        self.bridge_url = normalize_bridge_url(bridge_url)

        self.events = events or EventDelegator(self.logger)
        self.transport = transport or WebSocketTransport(self.logger)
        self.cipher = cipher or AESCipher()

        self.state = SessionState(
            handshake_topic=str(uuid.uuid4()),
            client_id=str(uuid.uuid4()),
            key=random_key(KEY_BYTES),
            chain_id=chain_id,
        )

        self._completion: Optional[Completion] = None
        self._listeners: List[Listener] = []
        self._transport_closed = False
        self._disconnecting = False

    # -- read-only session view --------------------------------------------

    @property
    def uri(self) -> str:
        return build_uri(self.state.handshake_topic, self.config.version, self.bridge_url, self.state.key_hex)

    @property
    def key(self) -> str:
        return self.state.key_hex

    @property
    def handshake_topic(self) -> str:
        return self.state.handshake_topic

    @property
    def client_id(self) -> str:
        return self.state.client_id

    @property
    def peer_id(self) -> Optional[str]:
        return self.state.peer_id

    @property
    def peer_meta(self) -> Optional[ClientMeta]:
        return self.state.peer_meta

    @property
    def handshake_id(self) -> Optional[int]:
        return self.state.handshake_id

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def connected(self) -> bool:
        return self.state.connected

    @property
    def chain_id(self) -> Optional[int]:
        return self.state.chain_id

    @property
    def network_id(self) -> Optional[int]:
        return self.state.network_id

    @property
    def accounts(self) -> Optional[List[str]]:
        return self.state.accounts

    @property
    def session(self) -> SessionData:
        return self.state.snapshot()

    # -- lifecycle -----------------------------------------------------------

    async def connect(self) -> SessionData:
        if self.state.phase is not Phase.INIT:
            raise SessionStateError(f"connect() already used (phase {self.state.phase.name})")
        self.state.phase = Phase.PENDING

        self.transport.add_listener(self._on_message)
        self._listeners.append(self.events.listen_for(WC_SESSION_UPDATE, self._handle_peer_update))

        try:
            await self.transport.open(self.bridge_url)
            await self.transport.subscribe(self.state.client_id)
        except TransportError as e:
            self.logger.error("transport_failed", bridge=self.bridge_url, error=str(e))
            self.state.phase = Phase.DISCONNECTED
            await self._release()
            raise

        self.logger.info("client_connected", bridge=self.bridge_url, client_id=self.state.client_id)
        return await self._create_session()

    async def _create_session(self) -> SessionData:
        params = SessionRequestParams(
            peer_id=self.state.client_id,
            peer_meta=self.client_meta,
            chain_id=self.state.chain_id,
        )
        request = JsonRpcRequest(method=WC_SESSION_REQUEST, params=[params.to_wire()])
        self.state.handshake_id = request.id

        completion = Completion()
        self._completion = completion

        def on_failed(err: ErrorResponse):
            if err.message in REJECTION_MESSAGES:
                completion.cancel(err.message)
            else:
                completion.set_exception(SessionFailed(err.message))

        # every answer to the handshake id is routed here, including later
        # approvals that carry updated accounts
        self._listeners.append(self.events.listen_for(response_event(request.id), self._handle_session_response))
        waiters = [
            self.events.listen_for(EVENT_CONNECT, completion.set_result),
            self.events.listen_for(EVENT_SESSION_FAILED, on_failed, model=ErrorResponse),
        ]

        try:
            await self.send_request(request, self.state.handshake_topic)
            self.logger.info("handshake_sent", handshake_id=request.id, topic=self.state.handshake_topic)
            return await completion
        except asyncio.CancelledError:
            if completion.cancel_reason is not None:
                self.logger.info("session_rejected", reason=completion.cancel_reason)
                raise SessionRejected(completion.cancel_reason) from None
            raise
        finally:
            for w in waiters:
                self.events.remove(w)

    async def disconnect(self, reason: str = DEFAULT_DISCONNECT_MESSAGE):
        if self.state.phase is Phase.DISCONNECTED or self._disconnecting:
            return
        # claimed before the first await so overlapping calls notify the peer once
        self._disconnecting = True

        if self.state.connected and self.state.peer_id:
            # an all-empty session tells the wallet we are gone
            request = JsonRpcRequest(method=WC_SESSION_UPDATE, params=[SessionData().to_wire()])
            try:
                await self.send_request(request)
            except TransportError as e:
                self.logger.warning("disconnect_notify_failed", error=str(e))

        await self._handle_session_disconnect(reason)

    async def close(self):
        """Release the transport without telling the peer.

        A connect() still waiting on the handshake fails with SessionFailed.
        """
        self.state.phase = Phase.DISCONNECTED
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(SessionFailed(SESSION_CLOSED))
        await self._release()

    # -- outbound ------------------------------------------------------------

    async def send_request(self, request: Payload, topic: Optional[str] = None, silent: Optional[bool] = None):
        if silent is None:
            silent = is_silent(request, self.config.signing_methods)

        topic = topic or self.state.peer_id
        if not topic:
            raise NotConnectedError("no peer topic; connect() has not completed")

        plaintext = dumps(request)
        encrypted = await self.cipher.encrypt(self.state.key, plaintext)

        message = NetworkMessage(
            topic=topic,
            type="pub",
            payload=encode_encrypted_payload(encrypted),
            silent=silent,
        )
        await self.transport.send_message(message)

    # -- inbound -------------------------------------------------------------

    async def _on_message(self, message: NetworkMessage):
        if message.topic not in self.state.active_topics:
            return

        try:
            encrypted = decode_encrypted_payload(message.payload)
            raw = await self.cipher.decrypt(self.state.key, encrypted)
        except CipherError as e:
            self._note_decrypt_failure(e)
            return
        except ProtocolError as e:
            self.logger.warning("inbound_dropped", topic=message.topic, error=str(e))
            return

        try:
            parsed = loads_message(raw)
        except ProtocolError as e:
            self.logger.warning("inbound_dropped", topic=message.topic, error=str(e))
            return

        name = event_name(parsed)
        if name is None:
            self.logger.debug("inbound_without_event", topic=message.topic)
            return
        await self.events.publish(Event(name, raw))

    def _note_decrypt_failure(self, e: Exception):
        now_time = time.time()
        if now_time - self.state.last_decrypt_failure > 60:
            self.state.decrypt_failures = 0
        self.state.decrypt_failures += 1
        self.state.last_decrypt_failure = now_time
        log = self.logger.error if self.state.decrypt_failures >= self.config.max_decrypt_failures else self.logger.warning
        log("decryption_failed", error=str(e), failures=self.state.decrypt_failures)

    async def _handle_session_response(self, raw: str):
        try:
            response = SessionRequestResponse.model_validate_json(raw)
        except ModelValidationError as e:
            self.logger.warning("session_response_malformed", error=str(e))
            await self._handle_session_disconnect(MALFORMED_SESSION, EVENT_SESSION_FAILED)
            return

        result = response.result
        if result is not None and result.approved:
            if self.state.phase is Phase.DISCONNECTED:
                self.logger.info("late_approval_ignored", handshake_id=self.state.handshake_id)
                return

            first = self.state.phase is not Phase.CONNECTED
            if first and not result.peer_id:
                await self._handle_session_disconnect(MALFORMED_SESSION, EVENT_SESSION_FAILED)
                return

            self.state.phase = Phase.CONNECTED
            self.state.apply(result)

            if first:
                self.state.peer_id = result.peer_id
                self.state.peer_meta = result.peer_meta
                self.logger.info("session_connected", peer_id=result.peer_id,
                                 chain_id=result.chain_id, accounts=result.accounts)
                await self.events.trigger(EVENT_CONNECT, result)
            else:
                self.logger.info("session_updated", chain_id=result.chain_id, accounts=result.accounts)
                await self.events.trigger(EVENT_SESSION_UPDATE, result)
        elif response.is_error:
            await self._handle_session_disconnect(response.error.message, EVENT_SESSION_FAILED)
        else:
            await self._handle_session_disconnect(NOT_APPROVED, EVENT_SESSION_FAILED)

    async def _handle_peer_update(self, raw: str):
        try:
            request = JsonRpcRequest.model_validate_json(raw)
            data = SessionData.model_validate(request.params[0]) if request.params else SessionData()
        except ModelValidationError as e:
            self.logger.warning("session_update_malformed", error=str(e))
            return

        if not data.approved:
            await self._handle_session_disconnect(DEFAULT_DISCONNECT_MESSAGE)
            return
        if not self.state.connected:
            return

        self.state.apply(data)
        self.logger.info("session_updated", chain_id=data.chain_id, accounts=data.accounts, by="peer")
        await self.events.trigger(EVENT_SESSION_UPDATE, data)

    async def _handle_session_disconnect(self, message: str, event: str = EVENT_DISCONNECT):
        if self.state.phase is Phase.DISCONNECTED:
            return
        self.state.phase = Phase.DISCONNECTED
        self.logger.info("session_disconnected", reason=message, outcome=event)

        await self.events.trigger(event, ErrorResponse(message=message))

        # nothing else will resolve a connect() that is still waiting
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(SessionFailed(message))

        await self._release()

    async def _release(self):
        for listener in self._listeners:
            self.events.remove(listener)
        self._listeners.clear()

        if self._transport_closed:
            return
        self._transport_closed = True
        self.transport.remove_listener(self._on_message)
        try:
            await self.transport.close()
        except TransportError as e:
            self.logger.warning("transport_close_error", error=str(e))
