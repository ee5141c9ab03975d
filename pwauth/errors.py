"""
pwauth/errors.py

Error taxonomy for the identity protocol.

Every error is terminal for the request that raised it. Nothing here is
transient, so nothing is retried. Each class carries the HTTP status and the
stable `code` string the API layer renders.
"""

from __future__ import annotations

from typing import List, Optional


class AuthError(Exception):
    status: int = 400
    code: str = "AuthError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error": True, "code": self.code, "message": self.message}


# -----------------------------------------------------------------------------
# Verification (token layer)
# -----------------------------------------------------------------------------
class VerificationError(AuthError):
    code = "VerificationError"


class MalformedAssertion(VerificationError):
    code = "MalformedAssertion"


class UnsupportedAlgorithm(VerificationError):
    code = "UnsupportedAlgorithm"


class SignatureInvalid(VerificationError):
    code = "SignatureInvalid"


class SchemaInvalid(VerificationError):
    code = "SchemaInvalid"

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message or "; ".join(self.errors) or "schema validation failed")

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["fields"] = self.errors
        return detail


# -----------------------------------------------------------------------------
# Registry / protocol
# -----------------------------------------------------------------------------
class AlreadyRegistered(AuthError):
    status = 409
    code = "AlreadyRegistered"

    def __init__(self, subject: str):
        super().__init__("subject already registered")
        self.subject = subject


class UserExists(AuthError):
    status = 409
    code = "UserExists"

    def __init__(self, message: str = "User already registered"):
        super().__init__(message)


class ReplayDetected(AuthError):
    status = 409
    code = "ReplayDetected"

    def __init__(self, message: str = "nonce already used"):
        super().__init__(message)


class InvalidCredentials(AuthError):
    # One message for unknown subject, wrong key and bad token: no enumeration.
    status = 401
    code = "InvalidCredentials"

    def __init__(self, message: str = "Invalid username/password."):
        super().__init__(message)
