from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.logging import get_logger, setup_logging
from app.core.request_meta import extract_client_ip, rate_limit_scope
from app.db.base import Base
from app.db.migrations import ensure_runtime_schema
from app.db.session import SessionLocal, engine
from app.realtime.socket_server import build_socket_app, runtime
from app.services.rate_limit_service import RateLimitDecision, rate_limit_service

settings = get_settings()
setup_logging()
logger = get_logger(__name__)

api_app = FastAPI(title=settings.app_name, debug=settings.debug)


def _scope_limits(scope: str) -> tuple[int, int]:
    if scope == "sensitive":
        return settings.rate_limit_sensitive_limit, settings.rate_limit_sensitive_window_seconds
    return settings.rate_limit_global_limit, settings.rate_limit_global_window_seconds


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
        if not settings.rate_limit_enabled or request.url.path.endswith("/health"):
            return await call_next(request)

        scope = rate_limit_scope(request.url.path)
        limit, window_seconds = _scope_limits(scope)
        decision = rate_limit_service.check(
            f"api:{scope}:{extract_client_ip(request)}",
            limit=limit,
            window_seconds=window_seconds,
        )
        headers = _rate_limit_headers(decision)
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded"},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response


api_app.add_middleware(ApiRateLimitMiddleware)
api_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
api_app.include_router(api_router, prefix=settings.api_prefix)


@api_app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    ensure_runtime_schema(engine)
    with SessionLocal() as db:
        loaded = runtime.rooms.load(db)
    logger.info("Room directory ready with %s stored rooms", loaded)


@api_app.on_event("shutdown")
async def on_shutdown() -> None:
    await runtime.sink.close()
    if runtime.sink.dropped:
        logger.warning("%s chat messages never reached history", runtime.sink.dropped)


app = build_socket_app(api_app)
