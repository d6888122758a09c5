"""Unit-of-work helper.

Every ledger mutation and every planning mutation runs through
:func:`run_in_transaction`: the callable does its reads and writes on
``db.session``, the helper commits, and any failure rolls the whole unit back.
Concurrent writers show up as ``StaleDataError`` (version check) or
``IntegrityError`` (unique indexes); those and dropped connections are retried
a bounded number of times.  Business errors are never retried.
"""

import time
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from . import db
from .errors import ServiceUnavailable, ShopfloorError, StoreFailure

RETRYABLE = (StaleDataError, IntegrityError, OperationalError)


@dataclass(frozen=True)
class ActorContext:
    """Who is acting.  Authentication happens upstream; we only carry the id."""

    actor_id: Optional[str] = None


def _bound_statements(remaining: float):
    # Postgres cancels any statement (lock waits included) past the deadline
    if db.session.get_bind().dialect.name == "postgresql":
        db.session.execute(text(f"SET LOCAL statement_timeout = {max(1, int(remaining * 1000))}"))


def run_in_transaction(fn, *args, label: str = "store operation", **kwargs):
    cfg = current_app.config
    max_attempts = max(1, int(cfg.get("STORE_MAX_ATTEMPTS", 3)))
    backoff = float(cfg.get("STORE_RETRY_BACKOFF", 0.0))
    deadline = time.monotonic() + float(cfg.get("STORE_DEADLINE_SECONDS", 5.0))

    attempt = 0
    while True:
        attempt += 1
        try:
            _bound_statements(deadline - time.monotonic())
            result = fn(*args, **kwargs)
            if time.monotonic() >= deadline:
                current_app.logger.error("%s ran past its deadline, rolled back", label)
                raise ServiceUnavailable(f"Timed out during {label}")
            db.session.commit()
            return result
        except ShopfloorError:
            db.session.rollback()
            raise
        except RETRYABLE as exc:
            db.session.rollback()
            if attempt >= max_attempts:
                current_app.logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                raise StoreFailure(f"Could not complete {label}") from exc
            if time.monotonic() >= deadline:
                raise ServiceUnavailable(f"Timed out during {label}") from exc
            current_app.logger.warning(
                "%s conflicted (attempt %d/%d): %s", label, attempt, max_attempts, exc
            )
            if backoff:
                time.sleep(backoff * attempt)
        except Exception:
            db.session.rollback()
            raise
        if time.monotonic() >= deadline:
            raise ServiceUnavailable(f"Timed out during {label}")
