#!/usr/bin/env python3
"""
pwauth/client.py: derive a key from a password and talk to the auth server.

Mirrors what the browser client does:
  1) keypair = derive_keypair(password, origin)
  2) sub     = base64url(sha256(lower(email)))
  3) POST a self-signed assertion (Content-Type: application/jwt)

Usage:
  pwauth-client --server http://127.0.0.1:3001 register --email ada@example.test \
      --given Ada --family Lovelace
  pwauth-client --server http://127.0.0.1:3001 login --email ada@example.test

The password is read from --password or prompted for. --origin defaults to
the server URL, the same value a browser would use as its own origin. The
origin is normalized (lowercase host, no path) before it salts the key.

Defaults come from PWAUTH_SERVER_URL, PWAUTH_ORIGIN and PWAUTH_TIMEOUT
(environment or .env); flags override them.

Exit codes:
- 0: success
- 1: server rejected the request
- 2: could not reach the server, or the origin is not an http(s) URL
"""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from typing import Any, Dict, Optional

import httpx

from .config import ClientSettings, normalize_origin
from .keys import DerivedKeypair, derive_keypair, new_nonce, subject_from_email
from .tokens import sign_assertion


JWT_CONTENT_TYPE = "application/jwt"


# -----------------------------------------------------------------------------
# Assertion builders
# -----------------------------------------------------------------------------
def registration_assertion(
    keypair: DerivedKeypair,
    email: str,
    given: str,
    family: str,
    nonce: Optional[str] = None,
    now: Optional[int] = None,
) -> str:
    payload = {
        "sub": subject_from_email(email),
        "name": {"given": given, "family": family},
        "email": email,
        "nonce": nonce or new_nonce(),
    }
    return sign_assertion(keypair.private_key, keypair.jwk, payload, now=now)


def login_assertion(
    keypair: DerivedKeypair,
    email: str,
    nonce: Optional[str] = None,
    now: Optional[int] = None,
) -> str:
    payload = {
        "sub": subject_from_email(email),
        "nonce": nonce or new_nonce(),
    }
    return sign_assertion(keypair.private_key, keypair.jwk, payload, now=now)


# -----------------------------------------------------------------------------
# HTTP
# -----------------------------------------------------------------------------
class AuthAPIError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"[{status_code}] {code}: {message}")


class AuthClient:
    def __init__(self, server_url: str, origin: Optional[str] = None, timeout: float = 10.0, transport=None):
        self.base_url = server_url.rstrip("/")
        self.origin = normalize_origin(origin or self.base_url)
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def keypair(self, password: str) -> DerivedKeypair:
        return derive_keypair(password, self.origin)

    def _post(self, path: str, assertion: str) -> Dict[str, Any]:
        resp = self._http.post(path, content=assertion.encode("ascii"), headers={"content-type": JWT_CONTENT_TYPE})
        try:
            body = resp.json()
        except json.JSONDecodeError:
            body = {}
        if resp.status_code >= 400:
            raise AuthAPIError(
                resp.status_code,
                body.get("code", "UNKNOWN") if isinstance(body, dict) else "UNKNOWN",
                (body.get("message") or body.get("detail") or resp.text) if isinstance(body, dict) else resp.text,
            )
        return body

    def register(self, email: str, password: str, given: str, family: str) -> Dict[str, Any]:
        assertion = registration_assertion(self.keypair(password), email, given, family)
        return self._post("/api/register", assertion)["user"]

    def login(self, email: str, password: str) -> Dict[str, Any]:
        assertion = login_assertion(self.keypair(password), email)
        return self._post("/api/login", assertion)["user"]


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------
def main(argv: Optional[list] = None) -> int:
    settings = ClientSettings()

    p = argparse.ArgumentParser(description="Password-derived key auth client")
    p.add_argument("--server", default=settings.SERVER_URL, help="auth server base URL")
    p.add_argument(
        "--origin",
        default=settings.ORIGIN,
        help="verifier-origin used for derivation (default: --server)",
    )
    p.add_argument("--password", default=None, help="password (prompted if omitted)")
    sub = p.add_subparsers(dest="command", required=True)

    reg = sub.add_parser("register", help="register a new identity")
    reg.add_argument("--email", required=True)
    reg.add_argument("--given", required=True)
    reg.add_argument("--family", required=True)

    login = sub.add_parser("login", help="log in with an existing identity")
    login.add_argument("--email", required=True)

    sub.add_parser("pubkey", help="print the derived public JWK and exit")

    args = p.parse_args(argv)
    password = args.password if args.password is not None else getpass.getpass("Password: ")

    try:
        client = AuthClient(args.server, origin=args.origin, timeout=settings.TIMEOUT)
    except ValueError as e:
        print(f"FAIL: {e}", file=sys.stderr)
        return 2

    with client:
        if args.command == "pubkey":
            print(json.dumps(client.keypair(password).jwk, indent=2))
            return 0

        try:
            if args.command == "register":
                user = client.register(args.email, password, args.given, args.family)
            else:
                user = client.login(args.email, password)
        except AuthAPIError as e:
            print(f"FAIL: {e.message}", file=sys.stderr)
            return 1
        except httpx.HTTPError as e:
            print(f"FAIL: cannot reach {args.server}: {e}", file=sys.stderr)
            return 2

    print(f"OK: {args.command} as {user['name']['given']} {user['name']['family']} ({user['email']})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
