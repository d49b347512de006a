"""Unit-of-work helpers shared by the mutating stock services."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Callable, Iterator, TypeVar

from flask import current_app, g, has_app_context
from sqlalchemy.orm.exc import StaleDataError

from stockhub.exceptions import ConcurrentModification
from stockhub.extensions import db


logger = logging.getLogger(__name__)

T = TypeVar("T")


def current_operation_id() -> str | None:
    if not has_app_context():
        return None
    return getattr(g, "operation_id", None)


@contextmanager
def unit_of_work(name: str) -> Iterator[str]:
    """Run the enclosed block as one transaction.

    Commits when the block finishes and rolls back on any exception, so a
    failure partway through never leaves quantity, capacity and audit rows
    out of step. Yields the operation id stamped on log lines.
    """

    operation_id = uuid.uuid4().hex[:12]
    previous_id = current_operation_id()
    if has_app_context():
        g.operation_id = operation_id

    try:
        yield operation_id
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    finally:
        if has_app_context():
            g.operation_id = previous_id


def retry_on_conflict(func: Callable[..., T]) -> Callable[..., T]:
    """Re-run ``func`` from scratch when an optimistic version check fails.

    Each attempt reloads rows and re-validates, so a retried operation sees
    the state written by whoever won the race.
    """

    @wraps(func)
    def wrapper(*args, **kwargs) -> T:
        attempts = max(1, int(current_app.config.get("STOCK_CONFLICT_RETRIES", 3)))
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except StaleDataError as exc:
                db.session.rollback()
                if attempt == attempts:
                    logger.error(
                        "%s gave up after %d conflicting attempts", func.__name__, attempts
                    )
                    raise ConcurrentModification(
                        "The stock record was modified concurrently; please retry."
                    ) from exc
                logger.warning(
                    "Version conflict in %s (attempt %d of %d); retrying",
                    func.__name__,
                    attempt,
                    attempts,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    return wrapper
