"""Password hashing and verification.

Argon2 is deliberately slow, so every hash and verify runs on a dedicated
thread pool and never blocks the event loop.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError
from pwdlib.hashers.argon2 import Argon2Hasher

from matcha_auth.config.settings import settings

logger = logging.getLogger(__name__)

_password_hash = PasswordHash(
    (
        Argon2Hasher(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
        ),
    )
)

_executor: ThreadPoolExecutor | None = None

# Verified against when no account or no password hash exists, so the
# unknown-account path costs the same as a wrong password.
_DUMMY_HASH = _password_hash.hash("matcha-dummy-password-for-timing")


def _get_executor() -> ThreadPoolExecutor:
    global _executor

    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=settings.password_hash_workers,
            thread_name_prefix="password-hasher",
        )
    return _executor


def _verify_sync(password: str, password_hash: str) -> bool:
    try:
        return _password_hash.verify(password, password_hash)
    except (UnknownHashError, ValueError) as e:
        logger.error(f"Stored password hash could not be parsed: {type(e).__name__}")
        return False


async def hash_password(password: str) -> str:
    """Hash a password with Argon2.

    Args:
        password: Plain text password

    Returns:
        Encoded Argon2 hash string

    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_executor(), _password_hash.hash, password)


async def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a stored hash.

    A malformed or unrecognised hash fails closed.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_executor(), _verify_sync, password, password_hash)


async def verify_password_or_dummy(password: str, password_hash: str | None) -> bool:
    """Verify ``password``, burning equivalent work when there is no hash."""
    if password_hash is None:
        await verify_password(password, _DUMMY_HASH)
        return False
    return await verify_password(password, password_hash)


def shutdown_hasher_pool() -> None:
    """Stop the hashing thread pool. A later call to hash or verify recreates it."""
    global _executor

    if _executor is not None:
        _executor.shutdown(wait=True)
        _executor = None
