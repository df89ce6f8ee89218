# wcsession: encrypted dapp/wallet sessions over an untrusted bridge
# AES-256-CBC + HMAC-SHA256 envelopes, websocket relay transport

from __future__ import annotations

import argparse
import asyncio
import json
import secrets
import sys

from wcsession.client.engine import SessionEngine, normalize_bridge_url
from wcsession.client.errors import CipherError, ProtocolError, SessionFailed, SessionRejected
from wcsession.client.provider import SessionRpcClient
from wcsession.crypto.cipher import AESCipher, require_aes
from wcsession.protocol.codec import build_uri
from wcsession.protocol.constants import KEY_BYTES, PROTO_VERSION
from wcsession.util.deps import check_dependencies

logger = None  # structlog logger, set in configure_logging()


def configure_logging():
    global logger
    import structlog
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )
    logger = structlog.get_logger()
    return logger


# =============================
# Security Self-Check
# =============================

def security_self_check():
    checks = []

    checks.append(("Python >= 3.9", sys.version_info >= (3, 9)))

    try:
        test = [secrets.randbits(16) for _ in range(10)]
        checks.append(("Random source", all(x != 0 for x in test)))
    except Exception:
        checks.append(("Random source", False))

    try:
        require_aes()
        checks.append(("AES-CBC (cryptography)", True))
    except RuntimeError:
        checks.append(("AES-CBC (cryptography)", False))

    cipher = AESCipher()
    key = secrets.token_bytes(KEY_BYTES)
    try:
        a = cipher.encrypt_sync(key, "self-check")
        b = cipher.encrypt_sync(key, "self-check")
        checks.append(("Randomised IV", a.iv != b.iv and a.data != b.data))
        checks.append(("Round trip", cipher.decrypt_sync(key, a) == "self-check"))
    except (CipherError, RuntimeError):
        checks.append(("Round trip", False))
        a = None

    if a is not None:
        try:
            cipher.decrypt_sync(secrets.token_bytes(KEY_BYTES), a)
            checks.append(("Wrong key rejected", False))
        except CipherError:
            checks.append(("Wrong key rejected", True))

    uri = build_uri("t", PROTO_VERSION, normalize_bridge_url("https://bridge.example"), "00")
    checks.append(("Bridge scheme rewrite", "bridge=wss%3A%2F%2Fbridge.example" in uri))

    all_ok = all(ok for _, ok in checks)
    for name, ok in checks:
        (logger.info if ok else logger.error)("security_check", check=name, status=("OK" if ok else "FAILED"))

    if not all_ok:
        raise RuntimeError("Security self-check failed")
    logger.info("security_self_check_passed")
    return True


# =============================
# Client
# =============================

async def run_session(args) -> int:
    meta = {
        "name": args.name,
        "description": args.description,
        "url": args.url,
        "icons": args.icon or [],
    }
    engine = SessionEngine(meta, chain_id=args.chain_id, bridge_url=args.bridge, logger=logger)

    print("Scan or paste this URI in your wallet:")
    print(engine.uri)

    try:
        session = await asyncio.wait_for(engine.connect(), timeout=args.timeout)
    except SessionRejected as e:
        print(f"Wallet rejected the session: {e.reason}")
        await engine.close()
        return 2
    except asyncio.TimeoutError:
        print("Timed out waiting for the wallet")
        await engine.close()
        return 3

    print(f"Connected: chain={session.chain_id} accounts={session.accounts}")
    try:
        if args.request:
            params = json.loads(args.params) if args.params else []
            client = SessionRpcClient(engine, logger=logger)
            result = await client.send_request(args.request, params, timeout=args.timeout)
            print(json.dumps(result, indent=2))
    finally:
        await engine.disconnect()
    return 0


# =============================
# Main Entry Point
# =============================

def main():
    ok, missing = check_dependencies()
    if not ok:
        print("ERROR: Missing dependencies:")
        for dep in missing:
            print(f"  - {dep}")
        print(f"\nInstall with:\npip install {' '.join(missing)}")
        sys.exit(1)

    configure_logging()

    parser = argparse.ArgumentParser(description="Encrypted wallet session client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    connect_parser = subparsers.add_parser("connect", help="Pair with a wallet and optionally send one request")
    connect_parser.add_argument("--bridge", default=None, help="Bridge URL (random known bridge if omitted)")
    connect_parser.add_argument("--name", required=True)
    connect_parser.add_argument("--description", required=True)
    connect_parser.add_argument("--url", required=True)
    connect_parser.add_argument("--icon", action="append", help="Icon URL, may repeat")
    connect_parser.add_argument("--chain-id", type=int, default=1)
    connect_parser.add_argument("--timeout", type=float, default=120.0)
    connect_parser.add_argument("--request", help="JSON-RPC method to send once connected")
    connect_parser.add_argument("--params", help="JSON array of params for --request")

    subparsers.add_parser("check", help="Run security self-check")

    args = parser.parse_args()

    if args.command == "check":
        security_self_check()
        print("✓ Security self-check passed")
        return

    if args.command == "connect":
        security_self_check()
        try:
            sys.exit(asyncio.run(run_session(args)))
        except KeyboardInterrupt:
            logger.info("client_shutdown", reason="keyboard_interrupt")
            print("\nShutting down...")
        except SessionFailed as e:
            logger.error("session_failed", error=e.message)
            print(f"Session failed: {e.message}")
            sys.exit(1)
        except ProtocolError as e:
            logger.error("protocol_error", error=str(e))
            print(f"Protocol error: {e}")
            sys.exit(1)


if __name__ == "__main__":
    main()
