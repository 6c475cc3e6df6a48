"""
Error handling middleware for Product Service.
Maps the product error taxonomy and framework errors to JSON responses of
the form {message, error}.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.exceptions import ProductServiceError, ProductValidationError
from ...utils.logging import setup_product_logging

logger = setup_product_logging("product_service_error_handler")

INTERNAL_ERROR_MESSAGE = "Erreur serveur"


class ProductServiceErrorHandler:
    """
    Centralized error handling for Product Service.

    Domain errors carry their own status code and body; request body
    validation failures are reported as 400 like domain validation errors.
    """

    @staticmethod
    def setup_error_handlers(app: FastAPI) -> None:
        """
        Setup all error handlers for the FastAPI application.
        """

        @app.exception_handler(ProductServiceError)
        async def product_error_handler(
            request: Request, exc: ProductServiceError
        ) -> JSONResponse:
            return ProductServiceErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                content=exc.to_response(),
                error_type=type(exc).__name__,
            )

        @app.exception_handler(RequestValidationError)
        async def validation_exception_handler(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            """Handle Pydantic validation errors on request bodies and params."""
            fields: Dict[str, str] = {}
            for error in exc.errors():
                # Drop the leading "body"/"query" location segment
                loc = [str(part) for part in error["loc"][1:]] or [
                    str(part) for part in error["loc"]
                ]
                fields[".".join(loc)] = error["msg"]

            validation_error = ProductValidationError(fields)
            return ProductServiceErrorHandler._create_error_response(
                request=request,
                status_code=validation_error.status_code,
                content=validation_error.to_response(),
                error_type="validation_error",
            )

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            """Handle HTTP exceptions from Starlette/FastAPI."""
            return ProductServiceErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                content={"message": str(exc.detail)},
                error_type="http_error",
            )

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(
            request: Request, exc: Exception
        ) -> JSONResponse:
            logger.error(
                "Unhandled exception occurred",
                extra={
                    "user_id": getattr(request.state, "user_id", "anonymous"),
                    "path": request.url.path,
                    "method": request.method,
                    "exception_type": type(exc).__name__,
                    "exception_message": str(exc),
                    "event_type": "unhandled_exception",
                },
                exc_info=True,
            )
            return ProductServiceErrorHandler._create_error_response(
                request=request,
                status_code=500,
                content={"message": INTERNAL_ERROR_MESSAGE, "error": str(exc)},
                error_type="internal_server_error",
            )

    @staticmethod
    def _create_error_response(
        request: Request,
        status_code: int,
        content: Dict[str, Any],
        error_type: Optional[str] = None,
    ) -> JSONResponse:
        # 5xx responses are logged where they are produced
        if status_code < 500:
            logger.warning(
                f"Client error: {error_type}",
                extra={
                    "user_id": getattr(request.state, "user_id", "anonymous"),
                    "status_code": status_code,
                    "error_type": error_type,
                    "error_message": content.get("message"),
                    "path": request.url.path,
                    "method": request.method,
                    "event_type": "client_error",
                },
            )

        return JSONResponse(status_code=status_code, content=content)


def setup_product_error_handling(app: FastAPI) -> None:
    """
    Convenience function to setup error handling for Product Service.

    Args:
        app: FastAPI application instance
    """
    error_handler = ProductServiceErrorHandler()
    error_handler.setup_error_handlers(app)

    logger.info(
        "Product Service error handling configured",
        extra={"event_type": "error_handler_setup"},
    )
