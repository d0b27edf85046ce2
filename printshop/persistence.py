"""String slots the cart is persisted into.

A slot is a named string-keyed location. ``MemorySlot`` keeps values in a
dict; ``SessionSlot`` keeps them in the Flask signed-cookie session, which
lives as long as the browser keeps the cookie.
"""
from __future__ import annotations

from typing import Dict, MutableMapping, Optional


class MemorySlot:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self.writes += 1


class SessionSlot:
    def __init__(self, session: MutableMapping):
        self.session = session

    def get(self, key: str) -> Optional[str]:
        value = self.session.get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        self.session[key] = value
        if hasattr(self.session, "modified"):
            self.session.modified = True
