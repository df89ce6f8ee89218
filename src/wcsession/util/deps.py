from __future__ import annotations

REQUIRED = [
    ("websockets", "websockets"),
    ("cryptography", "cryptography"),
    ("structlog", "structlog"),
    ("pydantic", "pydantic"),
]


def check_dependencies() -> tuple[bool, list[str]]:
    missing = []
    for mod, pipname in REQUIRED:
        try:
            __import__(mod)
        except ImportError:
            missing.append(pipname)
    return (len(missing) == 0, missing)
