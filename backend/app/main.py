import uuid
import time
import json
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import LearningError
from app.routers import admin, auth, certificates, content, health, me, modules, notifications, progress, quizzes


def create_app() -> FastAPI:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app = FastAPI(title="Ecole LMS API", version="1.0.0")

    logger = logging.getLogger("ecole-lms")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    allow_origins = [o.strip() for o in str(settings.cors_allow_origins or "").split(",") if o.strip()]
    if "*" in allow_origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not include '*' when allow_credentials=true")

    is_prod = (settings.app_env or "").strip().lower() in {"prod", "production"}

    def _parse_csv(value: str) -> list[str]:
        return [x.strip() for x in str(value or "").split(",") if x.strip()]

    allow_methods_raw = str(settings.cors_allow_methods or "*").strip()
    allow_headers_raw = str(settings.cors_allow_headers or "*").strip()
    if is_prod:
        allow_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"] if allow_methods_raw == "*" else _parse_csv(allow_methods_raw)
        allow_headers = ["authorization", "content-type", "x-request-id"] if allow_headers_raw == "*" else _parse_csv(allow_headers_raw)
    else:
        allow_methods = ["*"] if allow_methods_raw == "*" else _parse_csv(allow_methods_raw)
        allow_headers = ["*"] if allow_headers_raw == "*" else _parse_csv(allow_headers_raw)

    def _request_id(request: Request) -> str | None:
        rid = getattr(getattr(request, "state", None), "request_id", None)
        rid = str(rid or "").strip()
        return rid or None

    def _error(request: Request, status_code: int, error_code: str, message: str, *, details=None, headers=None):
        payload = {
            "ok": False,
            "error_code": error_code,
            "error_message": message,
            "request_id": _request_id(request),
        }
        if details:
            payload["details"] = details
        return JSONResponse(status_code=int(status_code), content=payload, headers=headers)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        status_code: int | None = None

        if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
            origin = (request.headers.get("origin") or "").strip()
            if origin and origin not in allow_origins:
                response = _error(request, 403, "forbidden", "invalid origin")
                response.headers["X-Request-ID"] = rid
                return response

        try:
            response = await call_next(request)
            status_code = int(getattr(response, "status_code", 0) or 0)
        except Exception:
            status_code = 500
            raise
        finally:
            path = request.url.path
            if not path.startswith("/health"):
                logger.info(
                    json.dumps(
                        {
                            "ts": datetime.now(timezone.utc).isoformat(),
                            "rid": rid,
                            "user_id": getattr(request.state, "user_id", None),
                            "method": request.method,
                            "path": path,
                            "status": status_code,
                            "duration_ms": int((time.perf_counter() - t0) * 1000),
                        },
                        ensure_ascii=False,
                    )
                )
        response.headers["X-Request-ID"] = rid

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=()")
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")
        if is_prod:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    @app.exception_handler(LearningError)
    async def learning_error_handler(request: Request, exc: LearningError):
        return _error(request, exc.status_code, exc.error_code, exc.message, details=exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": ".".join(str(p) for p in e.get("loc", ())), "msg": str(e.get("msg") or "")}
            for e in exc.errors()
        ]
        return _error(request, 400, "invalid_input", "request validation failed", details={"errors": errors})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        if isinstance(detail, dict):
            error_code = str(detail.get("error_code") or "http_error")
            error_message = str(detail.get("error_message") or detail.get("detail") or "request failed")
        else:
            error_code = {401: "unauthorized", 403: "forbidden", 404: "not_found", 429: "rate_limited"}.get(
                int(exc.status_code), "http_error"
            )
            error_message = str(detail or "request failed")
        return _error(request, exc.status_code, error_code, error_message, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled exception", extra={"rid": _request_id(request)})
        return _error(request, 500, "internal_error", "internal server error")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=allow_methods,
        allow_headers=allow_headers,
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(modules.router)
    app.include_router(content.router)
    app.include_router(progress.router)
    app.include_router(quizzes.router)
    app.include_router(certificates.router)
    app.include_router(notifications.router)
    app.include_router(me.router)
    app.include_router(admin.router)

    return app


app = create_app()
