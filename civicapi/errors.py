from fastapi import HTTPException, status


class ApiError(HTTPException):
    """Client-facing failure; the message is returned as the response ``detail``."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=message)
        self.message = message


def not_found(message: str) -> ApiError:
    return ApiError(message, status.HTTP_404_NOT_FOUND)


def forbidden(message: str = "Insufficient permissions") -> ApiError:
    return ApiError(message, status.HTTP_403_FORBIDDEN)


def conflict(message: str) -> ApiError:
    return ApiError(message, status.HTTP_409_CONFLICT)
