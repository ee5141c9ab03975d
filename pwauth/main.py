# pwauth/main.py
#
# -----------------------------------------------------------------------------
# Architectural notes (high level)
# -----------------------------------------------------------------------------
# This file is intentionally "thin" HTTP glue:
#   - It wires two POST endpoints to the orchestrator in protocol.py.
#   - It MUST NOT implement crypto itself (keys.py / tokens.py / verifier.py).
#   - It holds no user state; the registry is injected through create_app().
#
# Key modules / responsibilities:
#   - config.py      : environment-driven settings (audit, replay guard, limits)
#   - keys.py        : password -> P-256 keypair derivation, fingerprints
#   - tokens.py      : compact self-signed assertion codec (ES256)
#   - verifier.py    : assertion verification against the embedded key
#   - storage.py     : identity registry + optional nonce ledger
#   - protocol.py    : registration / login state machine
#   - audit.py       : append-only hash-chained audit log
#
# Request body is the raw assertion with Content-Type: application/jwt.
# Verification, the registry and the audit append are blocking; endpoints
# hand them to the threadpool so the event loop keeps serving.
#
# There is no module-level app: settings are read when create_app() runs
# (uvicorn --factory pwauth.main:create_app).
#
# WARNING (DEPLOYMENT):
# - InMemoryIdentityRegistry is per process. With several Uvicorn workers each
#   worker has its own users. Inject a shared backend for multi-worker setups.
# - Transport security is expected upstream (TLS terminating proxy).
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .audit import AuditLog
from .config import Settings
from .errors import AuthError, InvalidCredentials, MalformedAssertion
from .protocol import IdentityService, RequestContext
from .storage import IdentityRegistry, InMemoryIdentityRegistry, NonceLedger

logger = logging.getLogger(__name__)

JWT_CONTENT_TYPE = "application/jwt"


def _request_context(request: Request) -> RequestContext:
    return RequestContext(
        request_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def _read_assertion(request: Request, max_bytes: int) -> str:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type != JWT_CONTENT_TYPE:
        raise HTTPException(415, f"expected content-type {JWT_CONTENT_TYPE}")

    body = await request.body()
    if len(body) > max_bytes:
        raise MalformedAssertion("assertion too large")
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedAssertion("assertion must be UTF-8 text") from e


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[IdentityRegistry] = None,
) -> FastAPI:
    settings = settings or Settings()
    registry = registry if registry is not None else InMemoryIdentityRegistry()

    service = IdentityService(
        registry=registry,
        nonce_ledger=NonceLedger(settings.NONCE_WINDOW_SECONDS) if settings.REPLAY_PROTECTION else None,
        audit=AuditLog(settings.AUDIT_DIR) if settings.AUDIT_ENABLED else None,
    )

    app = FastAPI(
        title="Password-Derived Key Auth Server",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.service = service

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status, content=exc.to_detail())

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------
    @app.post("/api/register")
    async def register(request: Request):
        wire = await _read_assertion(request, settings.MAX_ASSERTION_BYTES)
        record = await run_in_threadpool(service.register, wire, _request_context(request))
        return {"status": "success", "user": record.public_view()}

    @app.post("/api/login")
    async def login(request: Request):
        try:
            wire = await _read_assertion(request, settings.MAX_ASSERTION_BYTES)
        except MalformedAssertion as e:
            raise InvalidCredentials() from e
        record = await run_in_threadpool(service.login, wire, _request_context(request))
        return {"status": "success", "user": record.public_view()}

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "users": len(registry)}

    logger.info(
        "auth server ready (audit=%s, replay_protection=%s)",
        settings.AUDIT_ENABLED,
        settings.REPLAY_PROTECTION,
    )
    return app


def run() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("pwauth.main:create_app", factory=True, host="127.0.0.1", port=3001)
