from pathlib import Path
from typing import Optional
from urllib.parse import urlparse, urlunparse

from pydantic import field_validator
from pydantic_settings import BaseSettings


REPO_DIR = Path(__file__).resolve().parent.parent


def normalize_origin(v: str) -> str:
    """
    Normalize an absolute http(s) origin.

      - strip whitespace, path and trailing slash
      - require http/https and a hostname
      - lowercase hostname, keep an explicit port

    The origin salts key derivation, so "https://Example.test/" and
    "https://example.test" must give the same key.
    """
    v = (v or "").strip().rstrip("/")
    p = urlparse(v)

    if p.scheme not in ("http", "https"):
        raise ValueError("origin must start with http:// or https://")

    if not p.hostname:
        raise ValueError("origin must include a hostname")

    netloc = p.hostname.lower()
    if p.port:
        netloc = f"{netloc}:{p.port}"

    return urlunparse((p.scheme, netloc, "", "", "", ""))


class Settings(BaseSettings):
    """Server settings."""

    # tamper-evident audit log (see audit.py)
    AUDIT_ENABLED: bool = True
    AUDIT_DIR: Path = REPO_DIR / "audit"

    # nonce replay guard; off by default (assertions carry a nonce but the
    # protocol does not require servers to track it)
    REPLAY_PROTECTION: bool = False
    NONCE_WINDOW_SECONDS: int = 300

    # reject oversized bodies before decoding
    MAX_ASSERTION_BYTES: int = 16384

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("NONCE_WINDOW_SECONDS", "MAX_ASSERTION_BYTES")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class ClientSettings(BaseSettings):
    """Client defaults, read from PWAUTH_* variables."""

    SERVER_URL: str = "http://127.0.0.1:3001"

    # verifier-origin used for derivation; defaults to SERVER_URL
    ORIGIN: Optional[str] = None

    TIMEOUT: float = 10.0

    class Config:
        env_prefix = "PWAUTH_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("SERVER_URL")
    @classmethod
    def normalize_server_url(cls, v: str) -> str:
        return (v or "").strip().rstrip("/")

    @field_validator("ORIGIN")
    @classmethod
    def normalize_client_origin(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return normalize_origin(v)
