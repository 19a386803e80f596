import logging

from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from dbaas.services.errors import (
    AlreadyInProgressException,
    DbaasException,
    HypervisorException,
    InvalidRequestException,
    NotFoundException,
    RemoteExecutionException,
    WorkflowCancelledException,
)

ERROR_STATUS = {
    InvalidRequestException: 400,
    NotFoundException: 404,
    AlreadyInProgressException: 409,
    WorkflowCancelledException: 409,
    HypervisorException: 502,
    RemoteExecutionException: 502,
}

logger = logging.getLogger(__name__)


def _exception_handler(request: Request, exc: Exception):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.exception("Request failed path=%s status=%s error=%s", request.url.path, status, exc)
    else:
        logger.warning("Request failed path=%s status=%s error=%s", request.url.path, status, exc)
    return JSONResponse({"detail": str(exc), "error": getattr(exc, "kind", None)}, status_code=status)


def _validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(
        "Rejected malformed request path=%s locations=%s",
        request.url.path,
        [error.get("loc") for error in exc.errors()],
    )
    return JSONResponse({"detail": "Invalid JSON"}, status_code=400)


def register_exception_handlers(app):
    app.exception_handler(DbaasException)(_exception_handler)
    app.exception_handler(RequestValidationError)(_validation_handler)
