"""Shared validators package for the application.

This package contains reusable validation functions that can be used
across different features and schemas.

Available validators:
- password.py: Password strength validation
- username.py: Username format validation
"""

from .password import validate_password_strength
from .username import validate_username

__all__ = ["validate_password_strength", "validate_username"]
