"""
Maps the engine's error taxonomy onto HTTP responses.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rental_engine.core.exceptions import BookingEngineError
from rental_engine.core.logging import get_logger

logger = get_logger(__name__)


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("request_rejected", error=exc.code, detail=exc.message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
