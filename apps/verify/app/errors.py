import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("pediahelp.verify")


class AppError(Exception):
    """A request-level rejection rendered as ``{"error": code}``."""

    def __init__(self, code: str, status_code: int = status.HTTP_400_BAD_REQUEST, headers: dict | None = None):
        super().__init__(code)
        self.code = code
        self.status_code = status_code
        self.headers = headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    request.state.error_code = exc.code
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code}, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request.state.error_code = "bad_request"
    logger.info("Rejected malformed body on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "bad_request"})
