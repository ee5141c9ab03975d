"""
pwauth/protocol.py

Registration / login state machine.

    register: verify(RegistrationAssertion) -> registry.register_if_absent
    login:    verify(LoginAssertion)        -> registry.find_matching

The signature check in verifier.py only proves the caller holds the key in
the token header. Authentication happens here, when that key's fingerprint
is bound to (register) or compared with (login) the subject's record.

Login failures of any kind surface as InvalidCredentials so the response
does not reveal whether a subject exists. The real reason goes to the audit
log and the logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .audit import AuditLog, build_common
from .errors import AlreadyRegistered, AuthError, InvalidCredentials, UserExists
from .schemas import LoginAssertion, RegistrationAssertion
from .storage import IdentityRecord, IdentityRegistry, NonceLedger
from .verifier import verify_assertion

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    request_ip: Optional[str] = None
    user_agent: Optional[str] = None


class IdentityService:
    def __init__(
        self,
        registry: IdentityRegistry,
        nonce_ledger: Optional[NonceLedger] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.registry = registry
        self.nonce_ledger = nonce_ledger
        self.audit = audit

    def _audit(self, action: str, wire: str, ctx: Optional[RequestContext], result: str, reason: str, **fields) -> None:
        if self.audit is None:
            return
        ctx = ctx or RequestContext()
        self.audit.append(
            {
                **build_common(
                    action=action,
                    subject=fields.pop("subject", None),
                    fingerprint=fields.pop("fingerprint", None),
                    nonce=fields.pop("nonce", None),
                    assertion=wire,
                    request_ip=ctx.request_ip,
                    user_agent=ctx.user_agent,
                ),
                "result": result,
                "reason": reason,
                **fields,
            }
        )

    def register(self, wire: str, ctx: Optional[RequestContext] = None) -> IdentityRecord:
        try:
            verified = verify_assertion(wire, RegistrationAssertion)
            claims = verified.claims
            if self.nonce_ledger is not None:
                self.nonce_ledger.check_and_remember(verified.subject, claims.nonce)
            record = self.registry.register_if_absent(
                verified.subject,
                verified.fingerprint,
                {"name": claims.name.model_dump(), "email": claims.email},
            )
        except AlreadyRegistered as e:
            self._audit("register", wire, ctx, "denied", e.code, subject=e.subject)
            logger.warning("registration denied: subject already registered")
            raise UserExists() from e
        except AuthError as e:
            self._audit("register", wire, ctx, "denied", e.code)
            logger.warning("registration denied: %s: %s", e.code, e.message)
            raise

        self._audit(
            "register",
            wire,
            ctx,
            "approved",
            "registered",
            subject=record.id,
            fingerprint=record.public_key,
            nonce=claims.nonce,
        )
        logger.info("registered subject %s", record.id)
        return record

    def login(self, wire: str, ctx: Optional[RequestContext] = None) -> IdentityRecord:
        subject = None
        try:
            verified = verify_assertion(wire, LoginAssertion)
            subject = verified.subject
            if self.nonce_ledger is not None:
                self.nonce_ledger.check_and_remember(subject, verified.claims.nonce)
        except AuthError as e:
            self._audit("login", wire, ctx, "denied", e.code, subject=subject)
            logger.warning("login denied: %s: %s", e.code, e.message)
            raise InvalidCredentials() from e

        record = self.registry.find_matching(verified.subject, verified.fingerprint)
        if record is None:
            self._audit(
                "login",
                wire,
                ctx,
                "denied",
                "no_matching_identity",
                subject=verified.subject,
                fingerprint=verified.fingerprint,
            )
            logger.warning("login denied: no matching identity")
            raise InvalidCredentials()

        self._audit(
            "login",
            wire,
            ctx,
            "approved",
            "key_matches_registration",
            subject=record.id,
            fingerprint=record.public_key,
            nonce=verified.claims.nonce,
        )
        logger.info("login for subject %s", record.id)
        return record
