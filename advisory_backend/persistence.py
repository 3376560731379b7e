"""Two-stage persistence: one all-or-nothing transaction, then a best-effort retry.

``TransactionalStage`` applies every item through one ORM session and commits
once; any error rolls everything back and surfaces as ``TransactionFailure``.
``DirectStage`` applies each item on its own connection through the direct
client; a failing item is recorded and the rest continue. The outcome always
names the stage that persisted the data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .exceptions import PartialRowError, PersistenceFailure, TransactionFailure
from .logging_utils import get_logger
from .stores import DirectEntityStore, EntityStore, OrmEntityStore

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ApplyFn = Callable[[EntityStore, T], R]


class PersistencePath(str, Enum):
    TRANSACTIONAL = "transactional"
    DIRECT = "direct"


@dataclass
class StageResult(Generic[R]):
    path: PersistencePath
    results: List[R] = field(default_factory=list)
    failures: List[PartialRowError] = field(default_factory=list)


@dataclass
class PersistenceOutcome(Generic[R]):
    path: PersistencePath
    results: List[R] = field(default_factory=list)
    failures: List[PartialRowError] = field(default_factory=list)
    fallback_reason: Optional[str] = None

    @property
    def partial(self) -> bool:
        return bool(self.failures)


def _row_number(item: Any, index: int) -> int:
    return getattr(item, "row_number", index + 1)


class TransactionalStage:
    """All-or-nothing: every item commits together or none does."""

    path = PersistencePath.TRANSACTIONAL

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def run(self, items: Sequence[T], apply: ApplyFn) -> StageResult:
        try:
            with Session(self.engine) as session:
                with session.begin():
                    store = OrmEntityStore(session)
                    results = [apply(store, item) for item in items]
        except Exception as exc:
            raise TransactionFailure(
                f"Transactional write failed: {exc}",
                context={"items": len(items), "error_type": type(exc).__name__},
            ) from exc
        return StageResult(path=self.path, results=results)


class DirectStage:
    """Best-effort per item: each write commits on its own, failures are skipped."""

    path = PersistencePath.DIRECT

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def run(self, items: Sequence[T], apply: ApplyFn) -> StageResult:
        outcome: StageResult = StageResult(path=self.path)
        for index, item in enumerate(items):
            row_number = _row_number(item, index)
            try:
                with self.engine.connect() as connection:
                    outcome.results.append(apply(DirectEntityStore(connection), item))
            except Exception as exc:
                logger.warning("Row %s failed on the direct path: %s", row_number, exc)
                outcome.failures.append(
                    PartialRowError(str(exc), row_number=row_number, context={"error_type": type(exc).__name__})
                )
        return outcome


class PersistenceCoordinator:
    def __init__(self, primary: TransactionalStage, fallback: DirectStage) -> None:
        self.primary = primary
        self.fallback = fallback

    def persist(self, items: Sequence[T], apply: ApplyFn, *, label: str = "upload") -> PersistenceOutcome:
        """Persist ``items`` through the transactional stage, falling back once.

        Raises:
            PersistenceFailure: both stages failed to persist anything.
        """
        try:
            result = self.primary.run(items, apply)
        except TransactionFailure as exc:
            logger.warning("%s: transactional path failed, retrying row by row: %s", label, exc.message)
            fallback_reason = exc.message
        else:
            logger.info("%s: %d items persisted on the transactional path", label, len(result.results))
            return PersistenceOutcome(path=result.path, results=result.results)

        result = self.fallback.run(items, apply)
        if items and not result.results:
            logger.error("%s: direct path persisted nothing (%d failures)", label, len(result.failures))
            raise PersistenceFailure(
                "Both persistence paths failed; nothing was saved",
                context={
                    "label": label,
                    "transactional_error": fallback_reason,
                    "failed_rows": [failure.row_number for failure in result.failures],
                },
            )
        logger.info(
            "%s: %d items persisted on the direct path, %d failed",
            label,
            len(result.results),
            len(result.failures),
        )
        return PersistenceOutcome(
            path=result.path,
            results=result.results,
            failures=result.failures,
            fallback_reason=fallback_reason,
        )
