"""Translation of Supabase client failures into domain errors."""

from collections.abc import Iterator
from contextlib import contextmanager

import httpx
from supabase import AuthError, PostgrestAPIError

from scan_share.domain.errors import TransientIOError

STORE_ERRORS = (PostgrestAPIError, AuthError, httpx.HTTPError, OSError)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise store and transport failures as TransientIOError."""
    try:
        yield
    except STORE_ERRORS as exc:
        raise TransientIOError(f"Failed to {operation}: {exc}") from exc
