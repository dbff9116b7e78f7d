"""Account management errors.

Only raised where revealing the outcome is safe: the caller is already signed
in, or the input itself is malformed.
"""

from fastapi import HTTPException, status


class UserException(HTTPException):
    def __init__(self, detail: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class ValidationFailure(UserException):
    """Malformed or unacceptable input, reported field by field."""

    def __init__(self, detail: str):
        super().__init__(detail)


class UserNotFound(UserException):
    def __init__(self):
        super().__init__("User not found", status_code=status.HTTP_404_NOT_FOUND)


class UserAlreadyExists(UserException):
    """A unique account field is taken by another user."""

    def __init__(self, field: str):
        super().__init__(f"{field.capitalize()} already in use", status_code=status.HTTP_409_CONFLICT)


class UsernameAlreadyExists(UserAlreadyExists):
    def __init__(self):
        super().__init__("username")


class PasswordNotSet(UserException):
    """The account signs in through the identity provider only."""

    def __init__(self):
        super().__init__("This account signs in with Google and has no password")
