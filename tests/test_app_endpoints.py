import asyncio
import base64
import hashlib

from fastapi.testclient import TestClient

from pwauth.audit import AuditLog
from pwauth.client import login_assertion, registration_assertion
from pwauth.config import Settings
from pwauth.keys import derive_keypair
from pwauth.main import create_app
from pwauth.protocol import IdentityService
from pwauth.tokens import b64url_decode, b64url_encode

from conftest import ADA_EMAIL, ORIGIN


def _expected_sub(email: str) -> str:
    return base64.urlsafe_b64encode(hashlib.sha256(email.encode()).digest()).decode().rstrip("=")


def _register_ada(post_jwt, keys):
    return post_jwt("/api/register", registration_assertion(keys, ADA_EMAIL, "Ada", "Lovelace"))


def test_scenario_register(post_jwt, ada_keys):
    r = _register_ada(post_jwt, ada_keys)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    assert body["user"] == {
        "id": _expected_sub("ada@example.test"),
        "name": {"given": "Ada", "family": "Lovelace"},
        "email": "ada@example.test",
    }
    assert "publicKey" not in body["user"] and "public_key" not in body["user"]


def test_scenario_login_same_password(post_jwt, ada_keys):
    created = _register_ada(post_jwt, ada_keys).json()["user"]

    # a fresh derivation, as a returning user would do
    keys = derive_keypair("p1", ORIGIN)
    r = post_jwt("/api/login", login_assertion(keys, ADA_EMAIL))
    assert r.status_code == 200
    assert r.json() == {"status": "success", "user": created}


def test_scenario_login_wrong_password(post_jwt, ada_keys, other_keys):
    _register_ada(post_jwt, ada_keys)

    r = post_jwt("/api/login", login_assertion(other_keys, ADA_EMAIL))
    assert r.status_code == 401
    assert r.json() == {"error": True, "code": "InvalidCredentials", "message": "Invalid username/password."}


def test_scenario_login_corrupted_signature(post_jwt, ada_keys):
    _register_ada(post_jwt, ada_keys)
    h, p, s = login_assertion(ada_keys, ADA_EMAIL).split(".")
    sig = bytearray(b64url_decode(s))
    sig[0] ^= 0x80

    r = post_jwt("/api/login", f"{h}.{p}.{b64url_encode(bytes(sig))}")
    assert r.status_code == 401
    assert r.json()["code"] == "InvalidCredentials"


def test_register_duplicate_is_conflict(post_jwt, ada_keys, other_keys, registry):
    _register_ada(post_jwt, ada_keys)

    r = post_jwt("/api/register", registration_assertion(other_keys, ADA_EMAIL, "Ada", "Lovelace"))
    assert r.status_code == 409
    assert r.json()["code"] == "UserExists"
    assert len(registry) == 1


def test_register_malformed_is_bad_request(post_jwt):
    r = post_jwt("/api/register", "a.b")
    assert r.status_code == 400
    assert r.json()["code"] == "MalformedAssertion"


def test_register_schema_error_lists_fields(post_jwt, ada_keys):
    r = post_jwt("/api/register", login_assertion(ada_keys, ADA_EMAIL))
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "SchemaInvalid"
    assert any(f.startswith("payload.name") for f in body["fields"])
    assert any(f.startswith("payload.email") for f in body["fields"])


def test_login_malformed_is_invalid_credentials(post_jwt):
    r = post_jwt("/api/login", "garbage")
    assert r.status_code == 401
    assert r.json()["code"] == "InvalidCredentials"


def test_wrong_content_type_is_rejected(client, ada_keys):
    r = client.post("/api/register", json={"token": "x"})
    assert r.status_code == 415


def test_oversized_body_is_rejected(tmp_path, ada_keys):
    settings = Settings(AUDIT_ENABLED=False, MAX_ASSERTION_BYTES=64)
    client = TestClient(create_app(settings=settings))
    r = client.post(
        "/api/register",
        content=registration_assertion(ada_keys, ADA_EMAIL, "Ada", "Lovelace"),
        headers={"content-type": "application/jwt"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "MalformedAssertion"


def test_replay_protection_setting(tmp_path, ada_keys):
    settings = Settings(AUDIT_ENABLED=False, REPLAY_PROTECTION=True)
    client = TestClient(create_app(settings=settings))
    headers = {"content-type": "application/jwt"}

    reg = registration_assertion(ada_keys, ADA_EMAIL, "Ada", "Lovelace")
    assert client.post("/api/register", content=reg, headers=headers).status_code == 200

    wire = login_assertion(ada_keys, ADA_EMAIL)
    assert client.post("/api/login", content=wire, headers=headers).status_code == 200
    assert client.post("/api/login", content=wire, headers=headers).status_code == 401


def test_healthz_counts_users(client, post_jwt, ada_keys):
    assert client.get("/healthz").json() == {"ok": True, "users": 0}
    _register_ada(post_jwt, ada_keys)
    assert client.get("/healthz").json() == {"ok": True, "users": 1}


def test_audit_chain_written(post_jwt, ada_keys, other_keys, settings):
    _register_ada(post_jwt, ada_keys)
    post_jwt("/api/login", login_assertion(ada_keys, ADA_EMAIL))
    post_jwt("/api/login", login_assertion(other_keys, ADA_EMAIL))

    audit = AuditLog(settings.AUDIT_DIR)
    lines = audit.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert audit.verify_chain()

    lines[1] = lines[1].replace('"approved"', '"denied"')
    audit.log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    assert not audit.verify_chain()


def _event_loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_verification_runs_off_the_event_loop(monkeypatch, post_jwt, ada_keys):
    seen = []

    for name in ("register", "login"):
        real = getattr(IdentityService, name)

        def wrapper(self, wire, ctx, _real=real, _name=name):
            seen.append((_name, _event_loop_running()))
            return _real(self, wire, ctx)

        monkeypatch.setattr(IdentityService, name, wrapper)

    assert _register_ada(post_jwt, ada_keys).status_code == 200
    assert post_jwt("/api/login", login_assertion(ada_keys, ADA_EMAIL)).status_code == 200
    assert seen == [("register", False), ("login", False)]
