from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from stockhub.exceptions import InvalidOperation, ResourceNotFound
from stockhub.extensions import db
from stockhub.models import User


def resolve_performer(username: str) -> User:
    """Return the active user recorded as the performer of stock changes."""

    user = User.query.filter_by(username=(username or "").strip()).one_or_none()
    if user is None:
        raise ResourceNotFound("User", "username", username)
    if not user.is_active:
        raise InvalidOperation(f"User '{username}' is not active")
    return user


def ensure_user(username: str, full_name: str | None = None) -> User:
    """Create the user if needed; used to seed the CLI performer."""

    username = (username or "").strip()
    if not username:
        raise InvalidOperation("Username is required")

    for attempt in range(3):
        try:
            user = User.query.filter_by(username=username).one_or_none()
            if user is None:
                user = User(username=username, full_name=full_name)
                db.session.add(user)
                db.session.commit()
            return user
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise
    raise AssertionError("unreachable")  # pragma: no cover


def require_performer(performer: User | None) -> User:
    if performer is None:
        raise InvalidOperation("A performer is required for stock changes")
    if not performer.is_active:
        raise InvalidOperation(f"User '{performer.username}' is not active")
    return performer
