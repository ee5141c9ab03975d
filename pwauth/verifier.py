"""
pwauth/verifier.py

Self-signed assertion verification.

Steps (all must hold):
  1) split the compact structure, parse the header   -> MalformedAssertion
  2) rebuild the ES256 / P-256 key from header.jwk   -> UnsupportedAlgorithm
  3) verify the signature with that embedded key     -> SignatureInvalid
  4) parse the payload, validate against op schema   -> MalformedAssertion / SchemaInvalid
  5) compute the public key fingerprint

The payload is not parsed until the signature over its raw bytes has been
checked, so any change to a signed payload fails as SignatureInvalid.

WARNING: the key used in step 3 comes from the token being verified. That is
intentional for this scheme and only safe because the caller compares the
fingerprint with the one registered for the subject. A passing verify() says
"signed by whoever holds this key", never "signed by this user". Do not reuse
this module for ordinary JWT validation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Type

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ValidationError

from .errors import MalformedAssertion, SchemaInvalid, SignatureInvalid, UnsupportedAlgorithm
from .keys import fingerprint_from_jwk, public_key_from_jwk
from .schemas import format_validation_errors
from .tokens import ALG_ES256, SplitAssertion, parse_json_object, raw_to_der_signature, split_assertion


@dataclass(frozen=True)
class VerifiedAssertion:
    subject: str
    fingerprint: str
    claims: BaseModel
    header: Dict[str, Any]


def embedded_public_key(header: Dict[str, Any]) -> ec.EllipticCurvePublicKey:
    if header.get("alg") != ALG_ES256:
        raise UnsupportedAlgorithm(f"unsupported alg: {header.get('alg')!r}")

    jwk = header.get("jwk")
    if not isinstance(jwk, dict):
        raise UnsupportedAlgorithm("header.jwk missing")
    if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256":
        raise UnsupportedAlgorithm(f"unsupported key: kty={jwk.get('kty')!r} crv={jwk.get('crv')!r}")

    try:
        return public_key_from_jwk(jwk)
    except ValueError as e:
        raise MalformedAssertion(f"invalid embedded key: {e}") from e


def check_signature(decoded: SplitAssertion, public_key: ec.EllipticCurvePublicKey) -> None:
    try:
        der = raw_to_der_signature(decoded.signature)
        public_key.verify(der, decoded.signing_input, ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, ValueError) as e:
        raise SignatureInvalid("signature verification failed") from e


def _normalized_view(header: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    # typ and other registered header params are not part of the contract
    return {"header": {k: header.get(k) for k in ("alg", "jwk")}, "payload": payload}


def verify_assertion(wire: str, schema: Type[BaseModel]) -> VerifiedAssertion:
    split = split_assertion(wire)
    public_key = embedded_public_key(split.header)
    check_signature(split, public_key)

    # payload bytes are authentic from here on
    payload = parse_json_object(split.payload_bytes, "payload")
    try:
        validated = schema.model_validate(_normalized_view(split.header, payload))
    except ValidationError as e:
        raise SchemaInvalid(format_validation_errors(e)) from e

    claims = validated.payload
    return VerifiedAssertion(
        subject=claims.sub,
        fingerprint=fingerprint_from_jwk(split.header["jwk"]),
        claims=claims,
        header=split.header,
    )
