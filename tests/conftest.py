"""Shared fixtures for the wcsession test suite.

FakeTransport stands in for the websocket bridge connection: it records
every outbound message and lets tests push inbound ones. FakeWallet plays
the peer, decrypting what the engine sends and answering with encrypted
JSON-RPC under the session key.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from wcsession.client.engine import SessionEngine
from wcsession.client.errors import TransportError
from wcsession.client.transport import Transport
from wcsession.crypto.cipher import AESCipher
from wcsession.protocol.models import EncryptedPayload, NetworkMessage


class FakeTransport(Transport):
    def __init__(self, fail_open: bool = False):
        super().__init__()
        self.fail_open = fail_open
        self.opened_with: List[str] = []
        self.subscriptions: List[str] = []
        self.sent: List[NetworkMessage] = []
        self.close_calls = 0
        self._open = False

    @property
    def connected(self) -> bool:
        return self._open

    async def open(self, url: str):
        self.opened_with.append(url)
        if self.fail_open:
            raise TransportError(f"could not open {url}")
        self._open = True

    async def subscribe(self, topic: str):
        self.subscriptions.append(topic)

    async def send_message(self, message: NetworkMessage):
        if not self._open:
            raise TransportError("not connected")
        self.sent.append(message)

    async def close(self):
        self.close_calls += 1
        self._open = False

    async def deliver(self, message: NetworkMessage):
        await self._deliver(message)


class FakeWallet:
    peer_id = "wallet-topic-0001"
    meta = {
        "name": "Test Wallet",
        "description": "A wallet used in tests",
        "url": "https://wallet.test",
        "icons": ["https://wallet.test/icon.png"],
    }

    def __init__(self, engine: SessionEngine, transport: FakeTransport):
        self.engine = engine
        self.transport = transport
        self.cipher = AESCipher()

    def decrypt(self, message: NetworkMessage) -> Dict[str, Any]:
        payload = EncryptedPayload.model_validate_json(message.payload)
        return json.loads(self.cipher.decrypt_sync(self.engine.state.key, payload))

    def sent_to(self, topic: str) -> List[Dict[str, Any]]:
        return [self.decrypt(m) for m in self.transport.sent if m.topic == topic]

    async def push(self, obj: Dict[str, Any], topic: Optional[str] = None):
        enc = self.cipher.encrypt_sync(self.engine.state.key, json.dumps(obj))
        await self.transport.deliver(NetworkMessage(
            topic=topic or self.engine.client_id,
            type="pub",
            payload=enc.model_dump_json(),
            silent=True,
        ))

    def session_result(self, approved=True, chain_id=1, accounts=None, peer_id="__default__", peer_meta="__default__"):
        result = {
            "approved": approved,
            "chainId": chain_id,
            "accounts": accounts if accounts is not None else ["0xabc0000000000000000000000000000000000001"],
        }
        if peer_id is not None:
            result["peerId"] = self.peer_id if peer_id == "__default__" else peer_id
        if peer_meta is not None:
            result["peerMeta"] = self.meta if peer_meta == "__default__" else peer_meta
        return result

    async def approve(self, **kwargs):
        await self.push({"id": self.engine.handshake_id, "jsonrpc": "2.0", "result": self.session_result(**kwargs)})

    async def reject(self, message: str = "Not Approved", code: int = -32000):
        await self.push({"id": self.engine.handshake_id, "jsonrpc": "2.0",
                         "error": {"code": code, "message": message}})

    async def respond(self, request_id: int, result: Any = None, error: Optional[Dict[str, Any]] = None):
        msg = {"id": request_id, "jsonrpc": "2.0"}
        if error is not None:
            msg["error"] = error
        else:
            msg["result"] = result
        await self.push(msg)


async def settle(condition, tries: int = 200):
    for _ in range(tries):
        if condition():
            return True
        await asyncio.sleep(0)
    return condition()


async def start_connect(engine: SessionEngine) -> asyncio.Task:
    task = asyncio.create_task(engine.connect())
    await settle(lambda: engine.handshake_id is not None and bool(engine.transport.sent))
    return task


async def finish(aw, timeout: float = 1.0):
    """Await a connect() task or coroutine, failing fast instead of hanging."""
    return await asyncio.wait_for(aw, timeout)


async def connected_engine(engine: SessionEngine, wallet: FakeWallet, **approve_kwargs):
    task = await start_connect(engine)
    await wallet.approve(**approve_kwargs)
    return await finish(task)


@pytest.fixture
def meta():
    return {
        "name": "Test Dapp",
        "description": "A dapp used in tests",
        "url": "https://dapp.test",
        "icons": ["https://dapp.test/icon.png"],
    }


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def engine(meta, transport):
    return SessionEngine(meta, transport=transport, bridge_url="https://bridge.test")


@pytest.fixture
def wallet(engine, transport):
    return FakeWallet(engine, transport)
