"""HTTP transport for the remote procedures.

``POST /call/{procedure}`` accepts the procedure payload as the JSON body and
returns its result. The caller is identified from the ``Authorization:
Bearer`` header through a verifier callable; token verification itself
belongs to the identity provider, so the default verifier simply treats the
bearer token as the caller id.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Optional

from fastapi import Body, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, core_logic, log, procedures
from .constants import ErrorKind
from .errors import ServiceError

TokenVerifier = Callable[[str], Optional[str]]

STATUS_CODES = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FAILED_PRECONDITION: 412,
    ErrorKind.INTERNAL: 500,
}


def bearer_uid(token: str) -> Optional[str]:
    return token.strip() or None


def resolve_caller(authorization: Optional[str], verify_token: TokenVerifier) -> procedures.Caller:
    if not authorization:
        return procedures.ANONYMOUS
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return procedures.ANONYMOUS
    return procedures.Caller(uid=verify_token(token.strip()))


def error_response(error: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=STATUS_CODES[error.kind], content=error.to_payload())


def create_app(
    context: core_logic.RuntimeContext,
    *,
    verify_token: TokenVerifier = bearer_uid,
    allowed_origins: Optional[list[str]] = None,
) -> FastAPI:
    """Build the FastAPI application around an already loaded context."""

    app = FastAPI(title=f"{context.settings.shop_name} POS API", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def invoke(name: str, payload: Any, authorization: Optional[str]) -> Any:
        caller = resolve_caller(authorization, verify_token)
        try:
            return procedures.call(context, name, payload, caller)
        except ServiceError as exc:
            return error_response(exc)

    @app.get("/ping")
    def ping():
        return invoke("ping", None, None)

    @app.get("/gstSummaryHttp")
    def gst_summary_http(month: Optional[str] = None, authorization: Optional[str] = Header(default=None)):
        return invoke("gstSummaryHttp", {"month": month}, authorization)

    @app.post("/call/{name}")
    def call_procedure(
        name: str,
        payload: Any = Body(default=None),
        authorization: Optional[str] = Header(default=None),
    ):
        return invoke(name, payload, authorization)

    return app


def main() -> None:  # pragma: no cover - manual server start
    import uvicorn

    config_path = os.getenv("GARAGE_POS_CONFIG")
    context = core_logic.load_runtime_context(Path(config_path) if config_path else None)
    core_logic.ensure_schema_version(context)
    port = int(os.getenv("PORT", 8000))
    log.info("Starting HTTP API on port %d", port)
    uvicorn.run(create_app(context), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
