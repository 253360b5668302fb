# Overview: Optimistic concurrency guard and transaction runner shared by every write path.

"""
Storefront Concurrency Invariants (authoritative)

- Every mutable row carries concurrency_stamp, an opaque random token that is
  replaced on every successful write.
- A write must present the stamp the caller last read. The comparison is
  folded into the UPDATE itself (WHERE id = ? AND concurrency_stamp = ?), so
  check and write are one atomic compare-and-swap; no lock is held across a
  network round trip.
- ORM writes get the same guarantee from the mapper's version_id_col: a flush
  whose WHERE clause matched no row raises StaleDataError, which is surfaced
  as ConcurrencyError and never retried.
- Only transient database failures (OperationalError: deadlock, lock timeout,
  dropped connection) are retried, once by default, because the whole
  transaction was rolled back and nothing partial was committed.
"""

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import select, text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.util import identity_key

from ..errors import ConcurrencyError, NotFoundError
from ..extensions import db
from ..models.common import new_concurrency_stamp

logger = logging.getLogger(__name__)


def prepare_update(model, entity_id: int, presented_stamp: str | None) -> str:
    """
    Load only (id, concurrency_stamp) and compare with the presented stamp.

    Returns the current stamp on match. Raises NotFoundError when the row is
    absent and ConcurrencyError when the stamp is stale. Touches no rows.
    """
    row = db.session.execute(
        select(model.id, model.concurrency_stamp).where(model.id == entity_id)
    ).first()
    if row is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    if not presented_stamp or row.concurrency_stamp != presented_stamp:
        raise ConcurrencyError(details={"entity": model.__name__, "id": entity_id})
    return row.concurrency_stamp


def load_for_update(model, entity_id: int, presented_stamp: str | None):
    """
    Load a full ORM instance whose stamp must equal presented_stamp.

    The caller mutates attributes and flushes; the mapper emits
    UPDATE ... WHERE concurrency_stamp = presented_stamp with a fresh stamp,
    so a writer that slipped in between this read and the flush makes the
    flush fail with StaleDataError instead of being overwritten.
    """
    instance = db.session.get(model, entity_id, populate_existing=True)
    if instance is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    if not presented_stamp or instance.concurrency_stamp != presented_stamp:
        raise ConcurrencyError(details={"entity": model.__name__, "id": entity_id})
    return instance


def compare_and_swap(
    model,
    entity_id: int,
    presented_stamp: str | None,
    values: dict,
    *,
    updated_by: int | None = None,
) -> str:
    """
    Single-statement guarded update.

    UPDATE <table> SET <values>, concurrency_stamp = <new>
    WHERE id = :id AND concurrency_stamp = :presented

    Returns the new stamp. When no row matched, re-reads (id, stamp) to report
    NotFoundError vs ConcurrencyError.
    """
    if not presented_stamp:
        raise ConcurrencyError(details={"entity": model.__name__, "id": entity_id})

    new_stamp = new_concurrency_stamp()
    patch = dict(values)
    patch["concurrency_stamp"] = new_stamp
    if updated_by is not None and hasattr(model, "updated_by"):
        patch["updated_by"] = updated_by

    result = db.session.execute(
        update(model)
        .where(model.id == entity_id, model.concurrency_stamp == presented_stamp)
        .values(**patch)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        prepare_update(model, entity_id, presented_stamp)
        # Row matched on re-read: another writer committed between the two statements
        raise ConcurrencyError(details={"entity": model.__name__, "id": entity_id})

    expire_cached(model, entity_id)
    return new_stamp


def expire_cached(model, entity_id: int) -> None:
    """Drop a stale identity-map copy after a statement-level write."""
    instance = db.session.identity_map.get(identity_key(model, entity_id))
    if instance is not None:
        db.session.expire(instance)


def begin_write_transaction() -> None:
    """
    Start the unit of work as a writer.

    NOTE: SQLite only allows one writer; BEGIN IMMEDIATE takes the write lock
    up front so two deferred transactions cannot deadlock on lock upgrade.
    Other databases serialize at the row on the first UPDATE.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    write: bool = True,
):
    """
    Execute func() as one database transaction and commit it.

    - Any exception rolls the whole unit back and propagates.
    - StaleDataError (lost optimistic race) becomes ConcurrencyError.
    - OperationalError is retried up to `attempts` total tries with
      exponential backoff; the retry re-runs func() from scratch.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSIENT_RETRY_ATTEMPTS", 2)
    if backoff_base is None:
        backoff_base = current_app.config.get("TRANSIENT_RETRY_BACKOFF", 0.05)

    for attempt in range(attempts):
        try:
            if write:
                begin_write_transaction()
            result = func()
            db.session.commit()
            return result
        except StaleDataError as exc:
            db.session.rollback()
            raise ConcurrencyError() from exc
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Transient database failure, retrying transaction (attempt %s of %s)",
                attempt + 2,
                attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
