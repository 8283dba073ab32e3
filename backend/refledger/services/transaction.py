"""
Session error handling for service functions.

Services take the ``Session`` as their first argument and commit their own
unit of work. ``with_rollback_on_error`` guarantees that a failed unit of
work is rolled back before the error reaches the caller, and turns driver
level connectivity failures into ``StorageUnavailable``.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from refledger.services.errors import StorageUnavailable

T = TypeVar("T")


def with_rollback_on_error(func: Callable[..., T]) -> Callable[..., T]:
    @wraps(func)
    def wrapper(db: Session, *args: Any, **kwargs: Any) -> T:
        try:
            return func(db, *args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            _safe_rollback(db, func.__name__)
            logger.error("Storage failure in {}: {}", func.__name__, exc)
            raise StorageUnavailable(f"Storage unavailable during {func.__name__}") from exc
        except Exception:
            _safe_rollback(db, func.__name__)
            raise

    return wrapper


def _safe_rollback(db: Session, name: str) -> None:
    try:
        db.rollback()
    except (OperationalError, InterfaceError) as rollback_error:
        logger.error("Rollback failed in {}: {}", name, rollback_error)
