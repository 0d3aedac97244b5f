import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from . import config
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str):
    kw = dict(pool_pre_ping=True)
    if database_url.startswith("sqlite"):
        kw["connect_args"] = {"check_same_thread": False}

    eng = create_engine(database_url, **kw)

    if database_url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA busy_timeout=5000;")
            cur.close()

    return eng


engine = make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def run_in_transaction(db: Session, work: Callable[[Session], T], attempts: int | None = None) -> T:
    """Run ``work(db)`` and commit, retrying from scratch on write conflicts.

    A unique-index violation or a serialization/lock failure means a concurrent
    writer got to the same key first; the transaction is rolled back and
    ``work`` re-evaluates from its first read. When every attempt conflicts the
    failure is surfaced as ``StoreUnavailable`` so the caller can redeliver.
    """
    attempts = attempts or config.STORE_RETRY_ATTEMPTS
    last_exc: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except (IntegrityError, OperationalError) as e:
            db.rollback()
            last_exc = e
            logger.warning(
                "store conflict attempt=%d/%d error=%s", attempt, attempts, e.__class__.__name__
            )
            time.sleep(0.01 * attempt)
        except Exception:
            db.rollback()
            raise

    raise StoreUnavailable("store conflict retries exhausted") from last_exc
