"""
Centralized exception handlers for consistent error responses

/v1 endpoints answer in the OpenAI error shape:

    {"error": {"message": ..., "type": ..., "code": ...}}

Dashboard endpoints keep FastAPI's {"detail": ...} shape.

When a metered /v1 request fails after authentication, the failure is
written to the usage ledger with the status code being returned.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError
from starlette.background import BackgroundTask
import logging

from gateway.api.dependencies import authenticate_unparsed_request
from gateway.api.errors import GatewayError, InvalidRequestError, InternalError
from gateway.services.usage import get_usage_recorder

logger = logging.getLogger(__name__)


def _is_v1(request: Request) -> bool:
    return request.url.path.startswith("/v1/") or request.url.path == "/v1"


def _failure_usage_task(request: Request, status_code: int, message: str):
    """Background task recording a failed metered request, if there is one"""
    auth = getattr(request.state, "api_key_auth", None)
    endpoint = getattr(request.state, "usage_endpoint", None)
    if auth is None or endpoint is None:
        return None

    record = auth.usage_record(
        endpoint,
        status_code,
        model=getattr(request.state, "usage_model", None),
        error=message,
    )
    return BackgroundTask(get_usage_recorder().record, record)


def gateway_error_response(request: Request, exc: GatewayError) -> JSONResponse:
    headers = {
        **getattr(request.state, "rate_limit_headers", {}),
        **exc.headers,
    }
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
        background=_failure_usage_task(request, exc.status_code, exc.message),
    )


def setup_exception_handlers(app: FastAPI):
    """
    Register all exception handlers on the FastAPI app.

    Call this after creating the FastAPI app instance:
        app = FastAPI()
        setup_exception_handlers(app)
    """

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return gateway_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors with detailed field info"""
        errors = []
        for error in exc.errors():
            if error["type"] == "json_invalid":
                errors.append({"field": "", "message": "Invalid JSON body", "type": error["type"]})
                continue
            field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
            errors.append({
                "field": field,
                "message": error["msg"],
                "type": error["type"]
            })

        if _is_v1(request):
            # Undecodable bodies fail before the auth dependency has run
            if getattr(request.state, "api_key_auth", None) is None:
                try:
                    await authenticate_unparsed_request(request)
                except GatewayError as e:
                    return gateway_error_response(request, e)

            message = "Invalid request"
            if errors:
                first = errors[0]
                message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
            return gateway_error_response(request, InvalidRequestError(message))

        return JSONResponse(
            status_code=422,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": errors
            }
        )

    @app.exception_handler(IntegrityError)
    async def integrity_exception_handler(request: Request, exc: IntegrityError):
        """Handle database integrity errors (unique constraints, foreign keys)"""
        logger.error(f"Database integrity error: {exc}")

        error_str = str(exc.orig) if exc.orig else str(exc)

        if "UNIQUE constraint failed" in error_str:
            field = error_str.split(".")[-1] if "." in error_str else "field"
            return JSONResponse(
                status_code=409,
                content={"detail": f"A record with this {field} already exists"}
            )

        return JSONResponse(
            status_code=500,
            content={"detail": "A database error occurred"}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Catch-all for unexpected errors"""
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")

        if _is_v1(request):
            return gateway_error_response(request, InternalError("Internal server error"))

        return JSONResponse(
            status_code=500,
            content={"detail": "An unexpected error occurred"}
        )
