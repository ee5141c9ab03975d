"""
pwauth/audit.py

Tamper-evident authentication audit log.

One JSON object per line (JSONL), hash-chained:

  H_0 = "0"*64
  H_n = SHA3-256( bytes.fromhex(H_{n-1}) || canonical_json(event_without_hash_fields) )

Each line stores prev_hash and hash. Any modification, deletion or
reordering of lines breaks the chain. The last hash is kept in a state file
and appends are serialized with flock, so several workers can share a log.

Events never carry profile claims (names, email). Assertions are recorded
as length + SHA3-256 only.
"""

from __future__ import annotations

import argparse
import fcntl
import hashlib
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional


GENESIS_HASH = "0" * 64

LOG_NAME = "auth_audit.jsonl"
STATE_NAME = "auth_audit.state"
LOCK_NAME = "auth_audit.lock"


def _canonical_json_bytes(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _sha3_256_hex(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def build_common(
    *,
    action: str,
    subject: Optional[str] = None,
    fingerprint: Optional[str] = None,
    nonce: Optional[str] = None,
    assertion: Optional[str] = None,
    request_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """Common audit fields. Only what was actually known is included."""
    out: Dict[str, Any] = {"ts": int(time.time()), "action": action}

    if subject:
        out["sub"] = subject
    if fingerprint:
        out["pubkey_sha3_256"] = _sha3_256_hex(fingerprint.encode("utf-8"))
    if nonce:
        out["nonce"] = nonce
    if request_ip:
        out["request_ip"] = request_ip
    if user_agent:
        out["user_agent"] = user_agent[:200]

    if assertion is not None:
        raw = assertion.encode("utf-8", errors="replace")
        out["assertion_len"] = len(raw)
        out["assertion_sha3_256"] = _sha3_256_hex(raw)

    return out


class AuditLog:
    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.log_path = self.directory / LOG_NAME
        self.state_path = self.directory / STATE_NAME
        self.lock_path = self.directory / LOCK_NAME

    def _read_last_hash_unlocked(self) -> str:
        """Caller must hold the lock. Missing or corrupt state restarts at genesis."""
        if not self.state_path.exists():
            return GENESIS_HASH
        s = self.state_path.read_text(encoding="utf-8").strip().lower()
        if len(s) != 64:
            return GENESIS_HASH
        try:
            bytes.fromhex(s)
        except ValueError:
            return GENESIS_HASH
        return s

    def append(self, event: Dict[str, Any]) -> str:
        """Append one event; returns the new chain head."""
        self.directory.mkdir(parents=True, exist_ok=True)

        with open(self.lock_path, "a+", encoding="utf-8") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                prev_hash = self._read_last_hash_unlocked()

                # callers may not inject chain fields
                e = dict(event)
                e.pop("prev_hash", None)
                e.pop("hash", None)

                next_hash = _sha3_256_hex(bytes.fromhex(prev_hash) + _canonical_json_bytes(e))

                stored = dict(e)
                stored["prev_hash"] = prev_hash
                stored["hash"] = next_hash

                with open(self.log_path, "ab") as f:
                    f.write(_canonical_json_bytes(stored) + b"\n")
                    f.flush()
                    os.fsync(f.fileno())

                self.state_path.write_text(next_hash + "\n", encoding="utf-8")
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

        return next_hash

    def verify_chain(self) -> bool:
        return verify_log_chain(self.log_path)


def verify_log_chain(path: Path) -> bool:
    """Recompute the hash chain of a log file. Missing file counts as valid."""
    path = Path(path)
    if not path.exists():
        return True

    prev = GENESIS_HASH
    with open(path, "rb") as f:
        for raw_line in f:
            raw_line = raw_line.strip()
            if not raw_line:
                continue
            try:
                obj = json.loads(raw_line.decode("utf-8"))
            except ValueError:
                return False
            if not isinstance(obj, dict) or obj.get("prev_hash") != prev:
                return False

            body = dict(obj)
            body.pop("prev_hash", None)
            line_hash = body.pop("hash", None)

            if _sha3_256_hex(bytes.fromhex(prev) + _canonical_json_bytes(body)) != line_hash:
                return False
            prev = line_hash

    return True


def main() -> int:
    """
    Verify an audit log from the command line.

    Exit codes:
    - 0: chain intact
    - 1: chain broken
    """
    p = argparse.ArgumentParser(description="Verify the hash chain of an auth audit log")
    p.add_argument("path", type=Path, help="path to auth_audit.jsonl")
    args = p.parse_args()

    if verify_log_chain(args.path):
        print(f"OK: {args.path}")
        return 0
    print(f"FAIL: hash chain broken in {args.path}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
