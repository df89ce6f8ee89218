from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, Tuple

from .constants import (
    DEFAULT_BRIDGES, SIGNING_METHODS, PROTO_VERSION, MAX_DECRYPT_FAILURES,
)


@dataclass(frozen=True)
class SessionConfig:
    """Immutable per-engine settings: where to relay and what counts as signing."""
    bridges: Tuple[str, ...] = DEFAULT_BRIDGES
    signing_methods: FrozenSet[str] = frozenset(SIGNING_METHODS)
    version: str = PROTO_VERSION
    max_decrypt_failures: int = MAX_DECRYPT_FAILURES

    def __post_init__(self):
        if not self.bridges:
            raise ValueError("SessionConfig needs at least one bridge")
        # accept any iterable from callers but store the frozen forms
        object.__setattr__(self, "bridges", tuple(self.bridges))
        object.__setattr__(self, "signing_methods", frozenset(self.signing_methods))


DEFAULT_CONFIG = SessionConfig()
