from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from refledger.api.routes import router as api_router
from refledger.core.config import get_settings
from refledger.core.logging import setup_logging
from refledger.db.bootstrap import bootstrap_schema
from refledger.db.session import engine
from refledger.services.errors import LedgerError
from refledger.services.rate_limit_service import RateLimitDecision, rate_limit_service

settings = get_settings()
setup_logging()

app = FastAPI(title=settings.app_name, debug=settings.debug)

# Operator endpoints get the tighter budget.
SENSITIVE_PATH_MARKERS = ("/admin/", "/settings")


def _client_address(request: Request) -> str:
    if settings.trust_proxy_headers:
        first_hop = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _limit_for(path: str) -> tuple[str, int, int]:
    if any(marker in path for marker in SENSITIVE_PATH_MARKERS):
        return (
            "sensitive",
            settings.rate_limit_sensitive_limit,
            settings.rate_limit_sensitive_window_seconds,
        )
    return "global", settings.rate_limit_global_limit, settings.rate_limit_global_window_seconds


def _rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset-Seconds": str(decision.reset_after_seconds),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


class ApiRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        path = request.url.path.lower()
        if not settings.rate_limit_enabled or path.endswith("/health"):
            return await call_next(request)

        scope, limit, window_seconds = _limit_for(path)
        decision = rate_limit_service.check(
            f"api:{scope}:{_client_address(request)}",
            limit=limit,
            window_seconds=window_seconds,
        )
        headers = _rate_limit_headers(decision)
        if not decision.allowed:
            logger.warning("Rate limit hit for {} on {}", _client_address(request), path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded", "code": "rate_limited"},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.add_middleware(ApiRateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
def on_startup() -> None:
    if settings.auto_create_schema:
        bootstrap_schema(engine)
    if not settings.service_api_token:
        logger.warning("SERVICE_API_TOKEN is empty; service endpoints accept unauthenticated calls")
    logger.info("{} started", settings.app_name)
