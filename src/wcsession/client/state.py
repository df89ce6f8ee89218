from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, List

from wcsession.protocol.models import ClientMeta, SessionData
from wcsession.protocol.phases import Phase


@dataclass
class SessionState:
    handshake_topic: str
    client_id: str
    key: bytes = field(repr=False)
    phase: Phase = Phase.INIT
    peer_id: Optional[str] = None
    peer_meta: Optional[ClientMeta] = None
    chain_id: Optional[int] = None
    network_id: Optional[int] = None
    accounts: Optional[List[str]] = None
    handshake_id: Optional[int] = None

    decrypt_failures: int = 0
    last_decrypt_failure: float = 0.0

    @property
    def key_hex(self) -> str:
        return self.key.hex()

    @property
    def connected(self) -> bool:
        return self.phase is Phase.CONNECTED

    @property
    def active_topics(self) -> tuple:
        return (self.client_id, self.handshake_topic)

    def apply(self, data: SessionData):
        self.chain_id = data.chain_id
        if data.network_id is not None:
            self.network_id = data.network_id
        self.accounts = list(data.accounts) if data.accounts is not None else None

    def snapshot(self) -> SessionData:
        return SessionData(
            approved=self.connected,
            chain_id=self.chain_id,
            network_id=self.network_id,
            accounts=list(self.accounts) if self.accounts is not None else None,
            peer_id=self.peer_id,
            peer_meta=self.peer_meta,
        )
