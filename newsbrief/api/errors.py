from fastapi import HTTPException


class ApiError(HTTPException):
    """HTTP error rendered as ``{"error": detail}``."""

    status_code = 500

    def __init__(self, detail: str, headers: dict | None = None):
        super().__init__(status_code=type(self).status_code, detail=detail, headers=headers)


class ValidationError(ApiError):
    status_code = 400


class AuthError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404
