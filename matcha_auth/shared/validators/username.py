"""Username validation functions."""

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 30


def validate_username(username: str) -> str:
    """Validate a username chosen at registration.

    Letters, digits, underscores and hyphens only, 3 to 30 characters.

    Raises:
        ValueError: If the username is malformed

    """
    if not username:
        raise ValueError("Username cannot be empty")
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValueError(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(f"Username must be at most {MAX_USERNAME_LENGTH} characters long")
    if not all(c.isalnum() or c in "_-" for c in username):
        raise ValueError("Username can only contain letters, numbers, underscores, and hyphens")
    return username
