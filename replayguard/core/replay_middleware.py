import uuid

from fastapi import Request
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from replayguard.core.config import settings
from replayguard.core.exceptions import NonceStoreUnavailableError, store_unavailable_response
from replayguard.core.request_context import request_id_ctx_var
from replayguard.schemas.guard_schema import GuardConfig
from replayguard.services.nonce_store import NonceStore, build_nonce_store
from replayguard.services.replay_guard import ReplayGuard, Reject


class ReplayProtectionMiddleware(BaseHTTPMiddleware):
    """
    Runs the replay guard before the protected handler.
    A rejection short-circuits the pipeline with a JSON error.
    """

    def __init__(self, app: ASGIApp, guard: ReplayGuard):
        super().__init__(app)
        self.guard = guard

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.guard.config.nonce_header) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx_var.set(request_id)

        try:
            try:
                decision = await self.guard.validate(request)
            except NonceStoreUnavailableError as exc:
                return store_unavailable_response(exc, request_id)

            if isinstance(decision, Reject):
                return JSONResponse(
                    status_code=decision.status_code,
                    content={
                        "error": decision.code.value,
                        "message": decision.message,
                        "request_id": request_id,
                    },
                )

            request.state.replay_fingerprint = decision.fingerprint

            return await call_next(request)
        finally:
            request_id_ctx_var.reset(token)


def add_replay_protection(
    app: Starlette,
    config: GuardConfig | None = None,
    store: NonceStore | None = None,
) -> ReplayGuard:
    """
    Register replay protection on an application.

    Defaults come from Settings: an in-memory store unless
    NONCE_STORE_BACKEND selects Redis. Register it before routes
    that must be protected; it returns the guard for inspection.
    """

    if config is None:
        config = GuardConfig.from_settings(settings)

    if store is None:
        store = build_nonce_store(settings)

    guard = ReplayGuard(config=config, store=store)

    app.add_middleware(ReplayProtectionMiddleware, guard=guard)

    return guard
