import pytest

from pwauth.client import login_assertion, registration_assertion
from pwauth.errors import MalformedAssertion, SchemaInvalid, SignatureInvalid, UnsupportedAlgorithm
from pwauth.keys import subject_from_email
from pwauth.schemas import LoginAssertion, RegistrationAssertion
from pwauth.tokens import b64url_decode, b64url_encode, encode_assertion, es256_header, es256_signer
from pwauth.verifier import verify_assertion

from conftest import ADA_EMAIL


def _resign(keys, header, payload):
    return encode_assertion(header, payload, es256_signer(keys.private_key))


def test_verifies_registration(ada_keys):
    wire = registration_assertion(ada_keys, ADA_EMAIL, "Ada", "Lovelace")
    v = verify_assertion(wire, RegistrationAssertion)

    assert v.subject == subject_from_email(ADA_EMAIL)
    assert v.fingerprint == ada_keys.fingerprint
    assert v.claims.name.given == "Ada"
    assert v.claims.email == ADA_EMAIL


def test_verifies_login(ada_keys):
    v = verify_assertion(login_assertion(ada_keys, ADA_EMAIL, nonce="n1", now=10), LoginAssertion)
    assert v.subject == subject_from_email(ADA_EMAIL)
    assert v.claims.nonce == "n1"
    assert v.claims.iat == 10


def test_any_single_bit_flip_in_payload_breaks_signature(ada_keys):
    wire = login_assertion(ada_keys, ADA_EMAIL, nonce="AbCdEfGh0123-_xyz", now=1700000000)
    header_seg, payload_seg, sig_seg = wire.split(".")
    raw = b64url_decode(payload_seg)

    # the payload is not read before the signature check, so flips that break
    # the JSON are reported the same way as flips that keep it valid
    for i in range(len(raw)):
        for bit in range(8):
            tampered = bytearray(raw)
            tampered[i] ^= 1 << bit
            forged = f"{header_seg}.{b64url_encode(bytes(tampered))}.{sig_seg}"
            with pytest.raises(SignatureInvalid):
                verify_assertion(forged, LoginAssertion)


def test_signature_from_other_key_is_rejected(ada_keys, other_keys):
    wire = login_assertion(ada_keys, ADA_EMAIL)
    h, p, _ = wire.split(".")
    foreign_sig = es256_signer(other_keys.private_key)(f"{h}.{p}".encode())
    with pytest.raises(SignatureInvalid):
        verify_assertion(f"{h}.{p}.{b64url_encode(foreign_sig)}", LoginAssertion)


def test_truncated_signature_is_rejected(ada_keys):
    h, p, s = login_assertion(ada_keys, ADA_EMAIL).split(".")
    short = b64url_encode(b64url_decode(s)[:63])
    with pytest.raises(SignatureInvalid):
        verify_assertion(f"{h}.{p}.{short}", LoginAssertion)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda h: h.update(alg="HS256"),
        lambda h: h.update(alg="none"),
        lambda h: h.pop("jwk"),
        lambda h: h["jwk"].update(crv="P-384"),
        lambda h: h["jwk"].update(kty="OKP"),
    ],
)
def test_unsupported_algorithm_or_key(ada_keys, mutate):
    header = es256_header(ada_keys.jwk)
    mutate(header)
    wire = _resign(ada_keys, header, {"sub": "s", "iat": 1, "nonce": "n"})
    with pytest.raises(UnsupportedAlgorithm):
        verify_assertion(wire, LoginAssertion)


def test_point_off_curve_is_malformed(ada_keys):
    header = es256_header(ada_keys.jwk)
    header["jwk"]["y"] = header["jwk"]["x"]
    wire = _resign(ada_keys, header, {"sub": "s", "iat": 1, "nonce": "n"})
    with pytest.raises(MalformedAssertion):
        verify_assertion(wire, LoginAssertion)


def test_registration_schema_reports_missing_fields(ada_keys):
    payload = {"sub": "s", "iat": 1, "nonce": "n", "name": {"given": "Ada"}}
    wire = _resign(ada_keys, es256_header(ada_keys.jwk), payload)

    with pytest.raises(SchemaInvalid) as exc:
        verify_assertion(wire, RegistrationAssertion)

    fields = " ".join(exc.value.errors)
    assert "payload.name.family" in fields
    assert "payload.email" in fields


def test_login_schema_rejects_negative_iat(ada_keys):
    wire = _resign(ada_keys, es256_header(ada_keys.jwk), {"sub": "s", "iat": -1, "nonce": "n"})
    with pytest.raises(SchemaInvalid) as exc:
        verify_assertion(wire, LoginAssertion)
    assert any(e.startswith("payload.iat") for e in exc.value.errors)


@pytest.mark.parametrize("iat", ["1700000000", True, None, [1]])
def test_login_schema_iat_must_be_a_json_number(ada_keys, iat):
    wire = _resign(ada_keys, es256_header(ada_keys.jwk), {"sub": "s", "iat": iat, "nonce": "n"})
    with pytest.raises(SchemaInvalid) as exc:
        verify_assertion(wire, LoginAssertion)
    assert any(e.startswith("payload.iat") for e in exc.value.errors)


@pytest.mark.parametrize("iat", [0, 1700000000, 1700000000.5, 1.5])
def test_login_schema_accepts_integer_and_fractional_iat(ada_keys, iat):
    wire = _resign(ada_keys, es256_header(ada_keys.jwk), {"sub": "s", "iat": iat, "nonce": "n"})
    assert verify_assertion(wire, LoginAssertion).claims.iat == iat


def test_login_schema_rejects_numeric_subject(ada_keys):
    wire = _resign(ada_keys, es256_header(ada_keys.jwk), {"sub": 12345, "iat": 1, "nonce": "n"})
    with pytest.raises(SchemaInvalid) as exc:
        verify_assertion(wire, LoginAssertion)
    assert any(e.startswith("payload.sub") for e in exc.value.errors)


def test_login_schema_requires_nonce(ada_keys):
    wire = _resign(ada_keys, es256_header(ada_keys.jwk), {"sub": "s", "iat": 1})
    with pytest.raises(SchemaInvalid):
        verify_assertion(wire, LoginAssertion)


def test_login_assertion_does_not_satisfy_registration(ada_keys):
    with pytest.raises(SchemaInvalid):
        verify_assertion(login_assertion(ada_keys, ADA_EMAIL), RegistrationAssertion)


def test_header_typ_is_not_part_of_schema(ada_keys):
    header = es256_header(ada_keys.jwk)
    header.pop("typ")
    wire = _resign(ada_keys, header, {"sub": "s", "iat": 1, "nonce": "n"})
    assert verify_assertion(wire, LoginAssertion).subject == "s"
