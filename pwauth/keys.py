"""
pwauth/keys.py

Deterministic key derivation + public key helpers.

Derivation (two PBKDF2-HMAC-SHA256 passes, 100k iterations each, 32 bytes):

    inner = PBKDF2(password=salt,     salt=origin)
    seed  = PBKDF2(password=password, salt=inner)
    d     = int(seed)          # big-endian

The inner pass scopes the credential to the verifying party: the same
password used against two origins gives unrelated keys.

If d is not a valid P-256 scalar (d == 0 or d >= n) the seed is replaced
by SHA-256(seed) and tried again. Every implementation must apply exactly
this rule so they agree on the resulting key.

Identity helpers:
  - subject_from_email: base64url(SHA-256(lower(email))), no padding
  - fingerprint_from_jwk: canonical "x.y" from the decoded coordinates
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .tokens import P256_COORD_LEN, b64url_decode, b64url_encode


PBKDF2_ITERATIONS = 100_000
SEED_LEN = 32

# Group order of secp256r1
P256_ORDER = int("FFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551", 16)

NONCE_BYTES = 24


@dataclass(frozen=True)
class DerivedKeypair:
    private_key: ec.EllipticCurvePrivateKey
    jwk: Dict[str, str]

    @property
    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self.private_key.public_key()

    @property
    def private_value(self) -> int:
        return self.private_key.private_numbers().private_value

    @property
    def fingerprint(self) -> str:
        return fingerprint_from_jwk(self.jwk)


# -----------------------------------------------------------------------------
# PBKDF2 / scalar
# -----------------------------------------------------------------------------
def pbkdf2_sha256(value: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=SEED_LEN,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(value.encode("utf-8"))


def scalar_from_seed(seed: bytes) -> int:
    """Map a 32-byte seed to a valid P-256 private scalar (resample by SHA-256)."""
    d = int.from_bytes(seed, "big")
    while d == 0 or d >= P256_ORDER:
        seed = hashlib.sha256(seed).digest()
        d = int.from_bytes(seed, "big")
    return d


def derive_seed(password: str, salt: str, origin: Optional[str] = None) -> bytes:
    origin = salt if origin is None else origin
    inner = pbkdf2_sha256(salt, origin.encode("utf-8"))
    return pbkdf2_sha256(password, inner)


def derive_keypair(password: str, salt: str, origin: Optional[str] = None) -> DerivedKeypair:
    """
    Derive the P-256 keypair for (password, salt, origin).

    `origin` is the verifier-origin; browser clients use their own origin as
    both salt and origin, which is what the default reproduces.
    """
    d = scalar_from_seed(derive_seed(password, salt, origin))
    private_key = ec.derive_private_key(d, ec.SECP256R1())
    return DerivedKeypair(private_key=private_key, jwk=public_jwk(private_key.public_key()))


# -----------------------------------------------------------------------------
# JWK <-> key
# -----------------------------------------------------------------------------
def public_jwk(public_key: ec.EllipticCurvePublicKey) -> Dict[str, str]:
    nums = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url_encode(nums.x.to_bytes(P256_COORD_LEN, "big")),
        "y": b64url_encode(nums.y.to_bytes(P256_COORD_LEN, "big")),
    }


def _coordinate(jwk: Mapping[str, Any], name: str) -> int:
    value = jwk.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"jwk.{name} must be a non-empty string")
    raw = b64url_decode(value)
    if len(raw) > P256_COORD_LEN:
        raise ValueError(f"jwk.{name} is longer than {P256_COORD_LEN} bytes")
    return int.from_bytes(raw, "big")


def public_key_from_jwk(jwk: Mapping[str, Any]) -> ec.EllipticCurvePublicKey:
    """
    Build a P-256 public key from JWK coordinates.

    Raises ValueError for undecodable coordinates or a point off the curve.
    kty/crv are checked by the caller.
    """
    x = _coordinate(jwk, "x")
    y = _coordinate(jwk, "y")
    return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()


def fingerprint_from_jwk(jwk: Mapping[str, Any]) -> str:
    """
    Canonical fingerprint: fixed-width base64url of x and y joined by ".".

    Computed from the integers, so a coordinate sent with stripped leading
    zeros or with padding gives the same fingerprint.
    """
    x = _coordinate(jwk, "x")
    y = _coordinate(jwk, "y")
    return (
        b64url_encode(x.to_bytes(P256_COORD_LEN, "big"))
        + "."
        + b64url_encode(y.to_bytes(P256_COORD_LEN, "big"))
    )


# -----------------------------------------------------------------------------
# Identity helpers
# -----------------------------------------------------------------------------
def subject_from_email(email: str) -> str:
    digest = hashlib.sha256(email.lower().encode("utf-8")).digest()
    return b64url_encode(digest)


def new_nonce(nbytes: int = NONCE_BYTES) -> str:
    return b64url_encode(secrets.token_bytes(nbytes))
