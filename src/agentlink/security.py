"""
agentlink.security — The HTTP edge of the link service.

Everything here wraps the API routes without knowing about credentials:
JSON logs tagged with a per-request id, per-client rate limits on the
verification and linking routes, a body size cap, CORS, the admin key that
guards anchoring and revocation, and the mapping of AgentLinkError onto the
``{"success": false, "code", "detail"}`` response shape.
"""

import hmac
import logging
import time
import uuid
from contextvars import ContextVar

from fastapi import HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from agentlink.errors import AgentLinkError

MAX_BODY_BYTES = 256 * 1024

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
}

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

logger = logging.getLogger("agentlink.http")


def _failure(status_code: int, code: str, detail: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "code": code, "detail": detail},
        headers=headers,
    )


# ─── Logging ───────────────────────────────────────────────────────

class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the request being served."""

    def filter(self, record):
        record.request_id = request_id_var.get("")
        return True


def configure_logging(level: str = "INFO") -> logging.Logger:
    """JSON lines on stderr for the whole ``agentlink`` logger tree.

    Safe to call once per app: the handler is installed once, the level is
    updated every time.
    """
    from pythonjsonlogger.json import JsonFormatter

    root = logging.getLogger("agentlink")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not any(getattr(h, "_agentlink", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
            rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
        ))
        handler.addFilter(RequestIdFilter())
        handler._agentlink = True
        root.addHandler(handler)
    return root


# ─── Rate limiting ─────────────────────────────────────────────────

limiter = Limiter(key_func=get_remote_address)


def rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = str(exc.limit.limit.get_expiry())
    logger.info("rate limited", extra={"path": request.url.path, "limit": exc.detail})
    return _failure(429, "RATE_LIMITED", "Too many requests, slow down",
                    headers={"Retry-After": retry_after})


# ─── Middleware ────────────────────────────────────────────────────

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id, body cap, access log and response headers in one pass."""

    def __init__(self, app, max_body: int = MAX_BODY_BYTES):
        super().__init__(app)
        self.max_body = max_body

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        token = request_id_var.set(rid)
        try:
            length = request.headers.get("content-length", "")
            if length.isdigit() and int(length) > self.max_body:
                response = _failure(413, "PAYLOAD_TOO_LARGE",
                                    f"Request body exceeds {self.max_body} bytes")
            else:
                started = time.perf_counter()
                response = await call_next(request)
                logger.info("%s %s -> %d", request.method, request.url.path, response.status_code,
                            extra={"duration_ms": round((time.perf_counter() - started) * 1000, 1)})
            response.headers["X-Request-ID"] = rid
            response.headers.update(SECURITY_HEADERS)
            return response
        finally:
            request_id_var.reset(token)


def configure_cors(app, allowed_origins):
    origins = list(allowed_origins or ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Browsers refuse credentials with a wildcard origin
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-Key", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )


# ─── Errors ────────────────────────────────────────────────────────

async def agentlink_error_handler(request: Request, exc: AgentLinkError):
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.detail)
    return _failure(exc.status_code, exc.code, exc.detail)


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled %s on %s", type(exc).__name__, request.url.path)
    return _failure(500, "INTERNAL_ERROR", "Internal server error")


# ─── Admin key ─────────────────────────────────────────────────────

_admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


async def require_admin_key(request: Request, key: str = Security(_admin_key_header)) -> bool:
    """Guard for anchoring and revocation. Compared in constant time."""
    expected = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Admin access not configured")
    if not key or not hmac.compare_digest(key.encode(), expected.encode()):
        client = request.client.host if request.client else "unknown"
        reason = "missing admin key" if not key else "invalid admin key"
        logger.warning("admin auth failed: %s", reason,
                       extra={"client": client, "path": request.url.path})
        if not key:
            raise HTTPException(status_code=401, detail="Missing admin key")
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return True


def apply_security(app, settings) -> None:
    """Install logging, limits, CORS and error mapping on an app built from ``settings``."""
    configure_logging(settings.log_level)
    configure_cors(app, settings.allowed_origins)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limited)
    app.add_exception_handler(AgentLinkError, agentlink_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.add_middleware(RequestContextMiddleware)
