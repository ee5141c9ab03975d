# pwauth/storage.py
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from .errors import AlreadyRegistered, ReplayDetected


@dataclass(frozen=True)
class Name:
    given: str
    family: str


@dataclass(frozen=True)
class IdentityRecord:
    id: str
    public_key: str
    name: Name
    email: str
    created_at: int = field(default_factory=lambda: int(time.time()))

    def public_view(self) -> Dict[str, Any]:
        # public_key (the fingerprint) is never returned to clients
        return {
            "id": self.id,
            "name": {"given": self.name.given, "family": self.name.family},
            "email": self.email,
        }


class IdentityRegistry(Protocol):
    """
    Storage contract for identity records.

    register_if_absent MUST be atomic: two concurrent registrations for the
    same subject may not both observe "absent".
    """

    def register_if_absent(self, subject: str, fingerprint: str, profile: Dict[str, Any]) -> IdentityRecord:
        ...

    def find_matching(self, subject: str, fingerprint: str) -> Optional[IdentityRecord]:
        ...

    def get(self, subject: str) -> Optional[IdentityRecord]:
        ...

    def __len__(self) -> int:
        ...


class InMemoryIdentityRegistry:
    """Process-local registry. Lives from app start to app stop."""

    def __init__(self):
        self._records: Dict[str, IdentityRecord] = {}
        self._lock = threading.Lock()

    def register_if_absent(self, subject: str, fingerprint: str, profile: Dict[str, Any]) -> IdentityRecord:
        name = profile["name"]
        record = IdentityRecord(
            id=subject,
            public_key=fingerprint,
            name=Name(given=name["given"], family=name["family"]),
            email=profile["email"],
        )
        with self._lock:
            if subject in self._records:
                raise AlreadyRegistered(subject)
            self._records[subject] = record
        return record

    def find_matching(self, subject: str, fingerprint: str) -> Optional[IdentityRecord]:
        record = self._records.get(subject)
        if record is None or record.public_key != fingerprint:
            return None
        return record

    def get(self, subject: str) -> Optional[IdentityRecord]:
        return self._records.get(subject)

    def __len__(self) -> int:
        return len(self._records)


class NonceLedger:
    """
    Optional replay guard: remembers (subject, nonce) pairs for a time window.

    Entries older than the window are pruned lazily on each check.
    """

    def __init__(self, window_seconds: int):
        self.window_seconds = int(window_seconds)
        self._seen: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def _prune_unlocked(self, now: int) -> None:
        cutoff = now - self.window_seconds
        for subject in list(self._seen):
            nonces = self._seen[subject]
            for n in [n for n, ts in nonces.items() if ts < cutoff]:
                nonces.pop(n, None)
            if not nonces:
                self._seen.pop(subject, None)

    def check_and_remember(self, subject: str, nonce: str, now: Optional[int] = None) -> None:
        now = int(time.time()) if now is None else now
        with self._lock:
            self._prune_unlocked(now)
            nonces = self._seen.setdefault(subject, {})
            if nonce in nonces:
                raise ReplayDetected()
            nonces[nonce] = now
