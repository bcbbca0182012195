from fastapi import Request, status
from fastapi.responses import JSONResponse

from ..core.exceptions import BookingError, ErrorKind

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
}

async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=STATUS_BY_KIND[exc.kind],
        content={
            "error": exc.code,
            "message": exc.message,
            "path": str(request.url.path)
        }
    )
