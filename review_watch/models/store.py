"""Storage interface used by the sync pipeline.

Every call opens its own short transaction and is retried on connection
level failures with the configured :class:`RetryPolicy`. The only
exception is :meth:`ReviewStore.claim_jobs` and single-shot inserts, which
run exactly once.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import exc as sa_exc
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..exceptions import StorageError
from ..utils.logging import setup_logger
from ..utils.retry import RetryPolicy, call_with_retry
from .base import Base, session_scope
from .records import Job

ModelT = TypeVar("ModelT", bound=Base)
T = TypeVar("T")

logger = setup_logger(__name__, context={"component": "store"})

_RETRYABLE_DB_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
)


def is_retryable_storage_error(exc: BaseException) -> bool:
    """Return True for connection-level failures worth another attempt."""

    return isinstance(exc, _RETRYABLE_DB_ERRORS)


def _chunks(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class ReviewStore:
    """Generic select/upsert/update access plus the atomic job claim."""

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int = 100,
        session_factory: Callable[[], Any] = session_scope,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._policy = retry_policy or RetryPolicy(max_attempts=4, base_delay=0.3, jitter=0.1)
        self._chunk_size = chunk_size
        self._session_scope = session_factory
        self._sleep = sleep

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def _run(self, operation: str, work: Callable[[Session], T], *, retry: bool = True) -> T:
        def _attempt() -> T:
            with self._session_scope() as session:
                return work(session)

        try:
            if not retry:
                return _attempt()
            return call_with_retry(
                _attempt,
                policy=self._policy,
                retryable=is_retryable_storage_error,
                log=logger,
                sleep=self._sleep,
            )
        except sa_exc.SQLAlchemyError as exc:
            logger.error(
                "Storage operation failed",
                extra={"status": "error", "operation": operation, "error": str(exc)},
            )
            raise StorageError(operation, str(exc)) from exc

    def select(
        self,
        model: type[ModelT],
        *criteria: Any,
        order_by: Sequence[Any] | Any | None = None,
        limit: int | None = None,
    ) -> list[ModelT]:
        """Return detached rows of ``model`` matching ``criteria``."""

        def _work(session: Session) -> list[ModelT]:
            statement = select(model).where(*criteria)
            if order_by is not None:
                ordering = order_by if isinstance(order_by, (list, tuple)) else [order_by]
                statement = statement.order_by(*ordering)
            if limit is not None:
                statement = statement.limit(limit)
            return list(session.scalars(statement).all())

        return self._run(f"select {model.__tablename__}", _work)

    def first(self, model: type[ModelT], *criteria: Any, order_by: Any | None = None) -> ModelT | None:
        rows = self.select(model, *criteria, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def select_in_chunks(
        self,
        model: type[ModelT],
        column: Any,
        values: Sequence[Any],
        *criteria: Any,
    ) -> list[ModelT]:
        """Select rows whose ``column`` is in ``values``, one query per chunk."""

        rows: list[ModelT] = []
        for chunk in _chunks(list(values), self._chunk_size):
            rows.extend(self.select(model, column.in_(list(chunk)), *criteria))
        return rows

    def _insert_statement(self, session: Session, model: type[Base]) -> Any:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise StorageError("upsert", f"Unsupported database dialect '{dialect}'")

    def upsert(
        self,
        model: type[Base],
        rows: Sequence[dict[str, Any]],
        conflict_keys: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        """Insert rows or update them in place on ``conflict_keys``.

        All chunks are written inside one transaction. Re-applying identical
        rows leaves the table unchanged.
        """

        if not rows:
            return 0

        def _work(session: Session) -> int:
            written = 0
            for chunk in _chunks(list(rows), self._chunk_size):
                statement = self._insert_statement(session, model).values(list(chunk))
                columns = update_columns or [
                    key for key in chunk[0].keys() if key not in conflict_keys
                ]
                if columns:
                    statement = statement.on_conflict_do_update(
                        index_elements=list(conflict_keys),
                        set_={column: statement.excluded[column] for column in columns},
                    )
                else:
                    statement = statement.on_conflict_do_nothing(index_elements=list(conflict_keys))
                session.execute(statement)
                written += len(chunk)
            return written

        return self._run(f"upsert {model.__tablename__}", _work)

    def insert_if_absent(
        self,
        model: type[Base],
        row: dict[str, Any],
        conflict_keys: Sequence[str],
    ) -> bool:
        """Insert ``row`` unless a row with the same conflict keys exists.

        Returns True only when a new row was written.
        """

        def _work(session: Session) -> bool:
            statement = (
                self._insert_statement(session, model)
                .values(**row)
                .on_conflict_do_nothing(index_elements=list(conflict_keys))
            )
            result = session.execute(statement)
            return result.rowcount == 1

        return self._run(f"insert {model.__tablename__}", _work)

    def insert(self, instance: ModelT, *, retry: bool = False) -> ModelT:
        """Add a new mapped instance and return it with generated keys populated."""

        def _work(session: Session) -> ModelT:
            session.add(instance)
            session.flush()
            return instance

        return self._run(f"insert {type(instance).__tablename__}", _work, retry=retry)

    def update(self, model: type[Base], values: dict[str, Any], *criteria: Any) -> int:
        """Apply ``values`` to every row matching ``criteria``; returns the row count."""

        def _work(session: Session) -> int:
            statement = update(model).where(*criteria).values(**values)
            result = session.execute(statement, execution_options={"synchronize_session": False})
            return result.rowcount or 0

        return self._run(f"update {model.__tablename__}", _work)

    def claim_jobs(self, max_jobs: int, now: datetime) -> list[Job]:
        """Atomically move up to ``max_jobs`` ready jobs from queued to running.

        Runs as one UPDATE statement and is never retried: a retried claim
        whose first attempt committed would hand the same jobs out twice.
        """

        def _work(session: Session) -> list[Job]:
            candidates = (
                select(Job.id)
                .where(Job.status == "queued", Job.run_at <= now)
                .order_by(Job.run_at, Job.id)
                .limit(max_jobs)
            )
            if session.get_bind().dialect.name == "postgresql":
                candidates = candidates.with_for_update(skip_locked=True)
            statement = (
                update(Job)
                .where(Job.id.in_(candidates), Job.status == "queued")
                .values(status="running", started_at=now, updated_at=now)
                .returning(Job.id)
            )
            claimed_ids = list(
                session.execute(
                    statement, execution_options={"synchronize_session": False}
                ).scalars()
            )
            if not claimed_ids:
                return []
            jobs = session.scalars(
                select(Job).where(Job.id.in_(claimed_ids)).order_by(Job.run_at, Job.id)
            ).all()
            return list(jobs)

        return self._run("claim jobs", _work, retry=False)
