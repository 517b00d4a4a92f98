import uuid
import time
import json
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.core.config import settings
from portal.core.errors import AnswerRejectedError, AssessmentError, InvalidTransitionError, SessionSetupError
from portal.routers import assessments, health
from portal.services.session_controller import SessionRegistry


def _status_for(exc: AssessmentError) -> int:
    if isinstance(exc, InvalidTransitionError):
        return 409
    if isinstance(exc, (SessionSetupError, AnswerRejectedError)):
        return 422
    return 500


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app = FastAPI(title="Student Portal Assessment API", version="1.0.0")

    logger = logging.getLogger("portal")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    allow_origins = [o.strip() for o in str(settings.cors_allow_origins or "").split(",") if o.strip()]
    if "*" in allow_origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not include '*' when allow_credentials=true")

    app.state.registry = registry if registry is not None else SessionRegistry()

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        status_code: int | None = None
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
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response

    def _request_id(request: Request) -> str | None:
        rid = getattr(getattr(request, "state", None), "request_id", None)
        rid = str(rid or "").strip()
        return rid or None

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        rid = _request_id(request)
        detail = exc.detail
        if isinstance(detail, dict):
            error_code = str(detail.get("error_code") or "http_error")
            error_message = str(detail.get("error_message") or detail.get("detail") or "request failed")
        else:
            error_code = "unauthorized" if int(exc.status_code) == 401 else "http_error"
            error_message = str(detail or "request failed")

        payload = {
            "ok": False,
            "error_code": error_code,
            "error_message": error_message,
            "request_id": rid,
        }
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(AssessmentError)
    async def assessment_exception_handler(request: Request, exc: AssessmentError):
        rid = _request_id(request)
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.exception("assessment engine failure", extra={"rid": rid})
        return JSONResponse(
            status_code=status_code,
            content={
                "ok": False,
                "error_code": exc.error_code,
                "error_message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("unhandled exception", extra={"rid": rid})
        return JSONResponse(
            status_code=500,
            content={
                "ok": False,
                "error_code": "internal_error",
                "error_message": "internal server error",
                "request_id": rid,
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(assessments.router)

    @app.on_event("shutdown")
    async def _shutdown_sessions() -> None:
        app.state.registry.close_all()

    return app


app = create_app()
