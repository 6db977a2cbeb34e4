from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coupon_engine.api.v1 import api_router
from coupon_engine.core.config import settings
from coupon_engine.core.logging_config import configure_logging
from coupon_engine.core.sentry import init_sentry
from coupon_engine.middleware import RequestLoggingMiddleware
from coupon_engine.schemas.error import ErrorResponse
from coupon_engine.services.errors import (
    CodeGenerationExhausted,
    CouponEngineError,
    InvalidCouponRequest,
    TemplateNotFound,
    UsageLimitConflict,
    UserNotFound,
)

_ERROR_STATUS: list[tuple[type[CouponEngineError], int]] = [
    (TemplateNotFound, 404),
    (UserNotFound, 404),
    (InvalidCouponRequest, 422),
    (CodeGenerationExhausted, 503),
    (UsageLimitConflict, 409),
]


def error_status(exc: CouponEngineError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "coupons", "description": "Coupon issuance, assignment and redemption"},
        {"name": "health", "description": "Liveness"},
        {"name": "metrics", "description": "In-process counters"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(CouponEngineError)
    async def coupon_error_handler(request: Request, exc: CouponEngineError):
        payload = ErrorResponse(detail=exc.reason, code=exc.code)
        return JSONResponse(status_code=error_status(exc), content=payload.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
