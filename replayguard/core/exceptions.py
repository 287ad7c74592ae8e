from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status


class NonceStoreUnavailableError(Exception):
    """
    Raised when the nonce store cannot be consulted.
    Distinct from a replay rejection: protection is unavailable,
    not the request stale.
    """

    def __init__(self, message: str, backend: str):
        super().__init__(message)
        self.backend = backend


def store_unavailable_response(
    exc: NonceStoreUnavailableError,
    request_id: str | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "replay_protection_unavailable",
            "message": "Replay protection store is unavailable",
            "backend": exc.backend,
            "request_id": request_id,
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "message": "Invalid request payload",
            "details": exc.errors(),
        },
    )
