# pwauth/tokens.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# This module is the *codec* for self-signed assertions.
#
# Responsibilities:
#   - Serialize header/payload into the compact three-part wire form
#   - Parse the wire form back into header/payload/signing input/signature
#   - Produce ES256 (ECDSA P-256 / SHA-256) signatures in JWS raw form
#
# What this module is NOT:
#   - Not a verifier (verifier.py decides whether an assertion is acceptable)
#   - Not a key store (keys are derived on demand, see keys.py)
#
# Wire format (JWS compact serialization, JWT-shaped):
#
#     <header_b64url>.<payload_b64url>.<signature_b64url>
#
# Where:
#   - header/payload are compact JSON (no whitespace), UTF-8
#   - base64url WITHOUT padding
#   - signature = ES256 over ASCII(header_b64url + "." + payload_b64url),
#     encoded as raw r||s (32 + 32 bytes), not DER
#
# The header carries the signer's own public key ("jwk"). Whoever verifies
# must treat that key as unauthenticated until compared with a registry.
# -----------------------------------------------------------------------------

from __future__ import annotations

import base64
import binascii
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from .errors import MalformedAssertion


ALG_ES256 = "ES256"
P256_COORD_LEN = 32

Signer = Callable[[bytes], bytes]

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*={0,2}")


# -----------------------------------------------------------------------------
# Base64 helpers
# -----------------------------------------------------------------------------
def b64url_encode(b: bytes) -> str:
    """URL-safe Base64 encoding WITHOUT padding."""
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def b64url_decode(s: str) -> bytes:
    """
    Decode URL-safe Base64 with optional missing padding.

    Characters outside the urlsafe alphabet are rejected rather than skipped.
    """
    s = str(s).strip()
    if not _B64URL_RE.fullmatch(s):
        raise ValueError("invalid base64url: characters outside [A-Za-z0-9_-]")
    s = s.rstrip("=")
    s += "=" * (-len(s) % 4)
    try:
        return base64.urlsafe_b64decode(s.encode("ascii"))
    except binascii.Error as e:
        raise ValueError(f"invalid base64url: {e}") from e


def compact_json(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# -----------------------------------------------------------------------------
# Decoded form
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SplitAssertion:
    """Header parsed, payload still raw: nothing in it is read before the signature is checked."""

    header: Dict[str, Any]
    payload_bytes: bytes
    signing_input: bytes
    signature: bytes


@dataclass(frozen=True)
class DecodedAssertion:
    header: Dict[str, Any]
    payload: Dict[str, Any]
    signing_input: bytes
    signature: bytes


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------
def encode_assertion(header: Dict[str, Any], payload: Dict[str, Any], sign: Signer) -> str:
    """
    Assemble and sign an assertion.

    `sign` receives the exact signing input bytes and returns the signature
    bytes to append (raw r||s for ES256).
    """
    signing_input = b64url_encode(compact_json(header)) + "." + b64url_encode(compact_json(payload))
    signature = sign(signing_input.encode("ascii"))
    return signing_input + "." + b64url_encode(signature)


def es256_header(jwk: Dict[str, str]) -> Dict[str, Any]:
    """Header for a self-signed assertion: the verification key travels inside."""
    return {
        "alg": ALG_ES256,
        "typ": "JWT",
        "jwk": {
            "kty": "EC",
            "crv": "P-256",
            "x": jwk["x"],
            "y": jwk["y"],
        },
    }


def es256_signer(private_key: ec.EllipticCurvePrivateKey) -> Signer:
    """
    Return a signer producing JWS-style ES256 signatures.

    cryptography emits DER; JWS wants fixed-width big-endian r||s.
    """

    def _sign(data: bytes) -> bytes:
        der = private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return r.to_bytes(P256_COORD_LEN, "big") + s.to_bytes(P256_COORD_LEN, "big")

    return _sign


def raw_to_der_signature(raw: bytes) -> bytes:
    if len(raw) != 2 * P256_COORD_LEN:
        raise ValueError("ES256 signature must be 64 bytes")
    r = int.from_bytes(raw[:P256_COORD_LEN], "big")
    s = int.from_bytes(raw[P256_COORD_LEN:], "big")
    return encode_dss_signature(r, s)


def sign_assertion(
    private_key: ec.EllipticCurvePrivateKey,
    jwk: Dict[str, str],
    payload: Dict[str, Any],
    now: Optional[int] = None,
) -> str:
    """
    Build a complete self-signed assertion.

    `iat` is set from the clock unless the caller already put one in the
    payload, and is placed first to match what browser clients send.
    """
    claims: Dict[str, Any] = {"iat": int(now if now is not None else time.time())}
    claims.update(payload)
    return encode_assertion(es256_header(jwk), claims, es256_signer(private_key))


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------
def _decode_segment(segment: str, name: str) -> bytes:
    try:
        return b64url_decode(segment)
    except ValueError as e:
        raise MalformedAssertion(f"{name} segment is not valid base64url") from e


def parse_json_object(raw: bytes, name: str) -> Dict[str, Any]:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedAssertion(f"{name} segment is not valid JSON") from e
    if not isinstance(obj, dict):
        raise MalformedAssertion(f"{name} segment must be a JSON object")
    return obj


def split_assertion(wire: str) -> SplitAssertion:
    """
    First stage of parsing: structure, header JSON and base64 only.

    The payload stays as raw bytes so a verifier can check the signature
    over the signing input before interpreting any claim.
    """
    if not isinstance(wire, str):
        raise MalformedAssertion("assertion must be text")

    parts = wire.strip().split(".")
    if len(parts) != 3:
        raise MalformedAssertion("assertion must have exactly three parts")

    header_seg, payload_seg, sig_seg = parts
    header = parse_json_object(_decode_segment(header_seg, "header"), "header")
    payload_bytes = _decode_segment(payload_seg, "payload")
    signature = _decode_segment(sig_seg, "signature")

    return SplitAssertion(
        header=header,
        payload_bytes=payload_bytes,
        signing_input=(header_seg + "." + payload_seg).encode("ascii"),
        signature=signature,
    )


def decode_assertion(wire: str) -> DecodedAssertion:
    """
    Parse a wire assertion completely.

    This performs *format validation only*. Signature and claims are checked
    by verifier.py, which works from split_assertion() instead.
    """
    split = split_assertion(wire)
    return DecodedAssertion(
        header=split.header,
        payload=parse_json_object(split.payload_bytes, "payload"),
        signing_input=split.signing_input,
        signature=split.signature,
    )
