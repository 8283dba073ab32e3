"""
Unique token allocation.

Codes are never checked for availability up front: a candidate row is
inserted inside a savepoint and the storage-level unique constraint decides.
Two concurrent allocators can therefore never both succeed with the same
token; the loser gets a fresh candidate, up to a bounded number of attempts.
"""

from collections.abc import Callable
import secrets
from typing import TypeVar

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.core.config import get_settings
from refledger.services.errors import CodeAllocationExhausted

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

RowT = TypeVar("RowT")


def generate_code(length: int, prefix: str = "") -> str:
    safe_length = max(4, min(24, int(length)))
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(safe_length))


def normalize_code(code: str | None) -> str:
    if not isinstance(code, str):
        return ""
    return code.strip().upper()


def allocate_unique(
    db: Session,
    build_row: Callable[[str], RowT],
    *,
    generate: Callable[[], str],
    max_attempts: int | None = None,
    on_conflict: Callable[[IntegrityError], None] | None = None,
) -> RowT:
    """
    Insert ``build_row(candidate)`` until the insert survives its unique constraints.

    ``on_conflict`` sees every ``IntegrityError`` before the retry and may raise
    to abort, e.g. when the conflict is on a column other than the code.
    """
    attempts = max(1, int(max_attempts or get_settings().code_allocation_max_attempts))
    for attempt in range(1, attempts + 1):
        candidate = generate()
        row = build_row(candidate)
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError as exc:
            if on_conflict is not None:
                on_conflict(exc)
            logger.warning("Code collision on attempt {}/{} for {}", attempt, attempts, type(row).__name__)
            continue
        return row

    raise CodeAllocationExhausted(f"Unable to allocate a unique code after {attempts} attempts")
