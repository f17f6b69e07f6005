"""
Centralized Error Handlers for the Watch Party backend

Registers the global FastAPI exception handlers and provides the
WebSocket error helpers used by the realtime layer.
"""

from traceback import format_exc
from typing import Any, Union

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from watchparty.exceptions import AppException, ErrorCode
from watchparty.utils.logging_config import get_logger


logger = get_logger(__name__)


class ErrorResponse:
    """
    Standard error body.

    {
        "success": false,
        "error": "ERROR_CODE",
        "message": "Message shown to the user",
        "details": {...},  // optional
        "status_code": 400
    }
    """

    @staticmethod
    def create(
        error_code: Union[ErrorCode, str],
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": False,
            "error": error_code.value if isinstance(error_code, ErrorCode) else error_code,
            "message": message,
            "status_code": status_code,
        }
        if details:
            response["details"] = details
        return response


def log_error(
    error: Exception,
    request: Request | None = None,
    level: str = "ERROR",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Log errors in a consistent shape.

    Args:
        error: Exception object
        request: FastAPI Request (optional)
        level: Log level (ERROR, WARNING, INFO)
        extra: Additional context
    """
    log_func = getattr(logger, level.lower(), logger.error)

    log_data: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if request:
        client_host: str | None = None
        if request.client is not None:
            client_host = request.client.host
        log_data.update({
            "method": request.method,
            "url": str(request.url),
            "client": client_host,
        })

    if extra:
        log_data.update(extra)

    log_func("Error occurred", extra=log_data)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the application."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        log_error(exc, request, level="WARNING")

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse.create(
                error_code=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                details=exc.details if exc.details else None,
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        error_code_map = {
            400: ErrorCode.VALIDATION_ERROR,
            404: ErrorCode.NOT_FOUND,
            422: ErrorCode.VALIDATION_ERROR,
            429: ErrorCode.RATE_LIMIT_EXCEEDED,
            500: ErrorCode.INTERNAL_SERVER_ERROR,
        }
        error_code = error_code_map.get(exc.status_code, ErrorCode.INTERNAL_SERVER_ERROR)

        log_error(exc, request, level="WARNING")

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse.create(
                error_code=error_code,
                message=str(exc.detail) if exc.detail else "HTTP error",
                status_code=exc.status_code,
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"][1:])  # skip 'body'
            errors.append({
                "field": field,
                "message": error["msg"],
                "type": error["type"],
            })

        log_error(
            exc,
            request,
            level="WARNING",
            extra={"validation_errors": errors},
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse.create(
                error_code=ErrorCode.VALIDATION_ERROR,
                message="Validation error - please check your input",
                status_code=422,
                details={"validation_errors": errors},
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """
        Catch-all handler.

        Detailed error information is only exposed in DEBUG mode.
        """
        log_error(exc, request, level="ERROR")

        if request.app.state.settings.DEBUG:
            message = f"{type(exc).__name__}: {str(exc)}"
            details = {"traceback": format_exc()}
        else:
            message = "Internal server error"
            details = {"detail": str(exc)}

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse.create(
                error_code=ErrorCode.INTERNAL_SERVER_ERROR,
                message=message,
                status_code=500,
                details=details,
            ),
        )


# ==================== WebSocket Error Handling ====================

class WebSocketErrorHandler:
    """
    Error helpers for WebSocket connections.

    Send failures are logged and swallowed so one broken client never
    aborts a broadcast to the rest of the room.
    """

    @staticmethod
    async def send_error_message(
        websocket,
        message: str,
        error_code: str = "ERROR",
        details: dict[str, Any] | None = None,
        event_type: str = "error",
    ) -> bool:
        """
        Send an error frame to a single connection.

        Returns:
            bool: True if the frame was sent
        """
        try:
            await websocket.send_json({
                "type": event_type,
                "error": error_code,
                "message": message,
                **({"details": details} if details else {}),
            })
            return True
        except Exception as e:
            log_error(e, level="WARNING", extra={"failed_message": message})
            return False

    @staticmethod
    async def send_exception(websocket, exc: AppException, event_type: str = "error") -> bool:
        """Send an AppException as an error frame."""
        return await WebSocketErrorHandler.send_error_message(
            websocket,
            exc.message,
            exc.code.value,
            exc.details or None,
            event_type=event_type,
        )

    @staticmethod
    def log_websocket_error(
        error: Exception,
        room_code: str | None = None,
        connection_id: str | None = None,
        message_type: str | None = None,
    ) -> None:
        """
        Log WebSocket errors in a consistent shape.

        Args:
            error: Exception object
            room_code: Room code (if any)
            connection_id: Connection id (if any)
            message_type: Event type (if any)
        """
        log_data: dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }

        if room_code:
            log_data["room_code"] = room_code
        if connection_id:
            log_data["connection_id"] = connection_id
        if message_type:
            log_data["message_type"] = message_type

        logger.warning("WebSocket error occurred", extra=log_data)
