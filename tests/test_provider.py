"""Tests for wcsession.client.provider: response correlation and routing."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import connected_engine, finish, settle
from wcsession.client.errors import NotConnectedError, RpcError, RpcTimeout
from wcsession.client.provider import FallbackProvider, SessionRpcClient


class TestSessionRpcClient:
    @pytest.mark.asyncio
    async def test_returns_correlated_result(self, engine, transport, wallet):
        await connected_engine(engine, wallet)
        client = SessionRpcClient(engine)

        task = asyncio.create_task(client.send_request("personal_sign", ["0xdead", "0xA"]))
        await settle(lambda: len(transport.sent) == 2)

        request = wallet.decrypt(transport.sent[-1])
        assert request["method"] == "personal_sign"
        assert transport.sent[-1].silent is False

        # an unrelated response must not resolve the call
        await wallet.respond(request["id"] + 1, result="0xwrong")
        assert not task.done()

        await wallet.respond(request["id"], result="0xsig")
        assert await finish(task) == "0xsig"
        assert engine.events.listener_count(f"response:{request['id']}") == 0

    @pytest.mark.asyncio
    async def test_error_response_raises(self, engine, transport, wallet):
        await connected_engine(engine, wallet)
        client = SessionRpcClient(engine)

        task = asyncio.create_task(client.send_request("eth_sendTransaction", [{"to": "0x1"}]))
        await settle(lambda: len(transport.sent) == 2)
        request = wallet.decrypt(transport.sent[-1])
        await wallet.respond(request["id"], error={"code": 4001, "message": "User rejected"})

        with pytest.raises(RpcError) as info:
            await finish(task)
        assert info.value.code == 4001
        assert info.value.message == "User rejected"

    @pytest.mark.asyncio
    async def test_timeout(self, engine, wallet):
        await connected_engine(engine, wallet)
        client = SessionRpcClient(engine)
        with pytest.raises(RpcTimeout):
            await client.send_request("eth_sign", ["0xA", "0x00"], timeout=0.01)

    @pytest.mark.asyncio
    async def test_requires_session(self, engine):
        with pytest.raises(NotConnectedError):
            await SessionRpcClient(engine).send_request("eth_sign")

    @pytest.mark.asyncio
    async def test_accounts_follow_session(self, engine, wallet):
        client = SessionRpcClient(engine)
        assert client.accounts == []
        await connected_engine(engine, wallet, accounts=["0xA", "0xB"])
        assert client.accounts == ["0xA", "0xB"]


def make_provider(accounts=("0xFROM",)):
    signer = MagicMock()
    signer.send_request = AsyncMock(return_value="signed")
    signer.accounts = list(accounts)
    signer.engine = MagicMock()
    signer.engine.config.signing_methods = frozenset({"eth_sendTransaction", "personal_sign"})
    fallback = MagicMock()
    fallback.send_request = AsyncMock(return_value="node")
    return FallbackProvider(signer, fallback), signer, fallback


class TestFallbackProvider:
    @pytest.mark.asyncio
    async def test_signing_methods_go_to_signer(self):
        provider, signer, fallback = make_provider()
        assert await provider.send_request("personal_sign", ["0x00", "0xFROM"]) == "signed"
        signer.send_request.assert_awaited_once()
        fallback.send_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_methods_go_to_fallback(self):
        provider, signer, fallback = make_provider()
        assert await provider.send_request("eth_blockNumber") == "node"
        fallback.send_request.assert_awaited_once_with("eth_blockNumber", [], timeout=None)
        signer.send_request.assert_not_awaited()

    def test_signing_set_defaults_to_engine_config(self):
        provider, signer, fallback = make_provider()
        assert provider.route("personal_sign") is signer
        assert provider.route("eth_signTypedData_v4") is fallback

    def test_explicit_signing_set(self):
        signer, fallback = MagicMock(spec=["send_request"]), MagicMock(spec=["send_request"])
        provider = FallbackProvider(signer, fallback, signing_methods=["eth_sign"])
        assert provider.route("eth_sign") is signer
        assert provider.route("personal_sign") is fallback

    @pytest.mark.asyncio
    async def test_fee_history_null_reward_percentiles(self):
        provider, signer, fallback = make_provider()
        await provider.send_request("eth_feeHistory", ["0x4", "latest", None])
        fallback.send_request.assert_awaited_once_with("eth_feeHistory", ["0x4", "latest", []], timeout=None)

    @pytest.mark.asyncio
    async def test_send_transaction_fills_from(self):
        provider, signer, fallback = make_provider()
        tx = {"to": "0xTO", "value": "0x1"}
        await provider.send_request("eth_sendTransaction", [tx])
        args = signer.send_request.await_args.args
        assert args[1][0] == {"to": "0xTO", "value": "0x1", "from": "0xFROM"}
        assert "from" not in tx

    @pytest.mark.asyncio
    async def test_send_transaction_keeps_from(self):
        provider, signer, fallback = make_provider()
        await provider.send_request("eth_sendTransaction", [{"from": "0xME", "to": "0xTO"}])
        assert signer.send_request.await_args.args[1][0]["from"] == "0xME"
