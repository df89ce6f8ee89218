from __future__ import annotations
from enum import Enum, auto


class Phase(Enum):
    INIT = auto()
    PENDING = auto()
    CONNECTED = auto()
    DISCONNECTED = auto()
