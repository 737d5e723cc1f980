import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from app.core.errors import EventStoreError
from app.schemas.response import ErrorResponse

log = logging.getLogger("app.api")


# ----------- Handlers -----------

def http_exception_handler(request: Request, exc: HTTPException):
    """404 for unknown orders, 400 for rejected commands."""
    body = ErrorResponse.build("http_error", exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request bodies and query params that fail pydantic validation."""
    body = ErrorResponse.build("validation_error", "Invalid input data", jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=422, content=body)


def event_store_exception_handler(request: Request, exc: EventStoreError):
    """
    Append-time failures (unregistered event, serialization, persistence).
    The business transaction has already rolled back when this runs.
    """
    log.error(f"Event store failure on path {request.url.path}: {exc.message}", exc_info=exc)
    body = ErrorResponse.build(exc.code, exc.message, exc.details)
    return JSONResponse(status_code=500, content=body)


def generic_exception_handler(request: Request, exc: Exception):
    """Last resort: logs the traceback and hides it from the client."""
    log.error(f"Unhandled exception on path: {request.url.path}", exc_info=exc)
    body = ErrorResponse.build("server_error", "Internal Server Error")
    return JSONResponse(status_code=500, content=body)


# ----------- Registration -----------

def setup_exception_handlers(app: FastAPI):
    """Wires every handler above into the app, most specific first."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(EventStoreError, event_store_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    return app
