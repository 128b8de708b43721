"""Migration runner.

Applies pending steps from the :class:`MigrationRegistry` to the embedded
engine, strictly in ascending ordinal order, advancing the
:class:`VersionLedger` only after a step fully succeeds.

State machine per boot::

    IDLE ──► SCANNING ──► APPLYING(n) ──► ... ──► IDLE      (success)
                               │
                               └──────────────► FAILED      (halt boot)

On an engine with transactional DDL (SQLite) each step, including its
ledger advance, is one transaction: a failing operation rolls the whole
step back. On engines without it, operations run one by one and the
ledger advances last; the idempotence contract of every operation makes
re-running a partially applied step safe.

Example::

    runner = MigrationRunner(SQLiteAdapter("panel.db"))
    result = runner.apply_pending()
    result.raise_on_failure()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.errors import ConcurrentModification, MigrationFailure
from panelstore.core.logging import get_logger

from .ledger import VersionLedger
from .steps import STEPS, MigrationRegistry, MigrationStep

logger = get_logger(__name__)


class RunnerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    APPLYING = "applying"
    FAILED = "failed"


@dataclass
class MigrationResult:
    """Result of a migration run."""

    from_version: int = 0
    to_version: int = 0
    applied: list[int] = field(default_factory=list)
    failed: int | None = None
    error: str | None = None
    cause: BaseException | None = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.failed is None

    def raise_on_failure(self) -> None:
        if not self.success:
            raise MigrationFailure(
                f"Migration {self.failed} failed: {self.error}",
                ordinal=self.failed,
                cause=self.cause,
            )


class MigrationRunner:
    """Applies registered migration steps to the embedded engine.

    Parameters
    ----------
    adapter
        Adapter for the embedded engine.
    registry
        Steps to apply. Defaults to the shipped :data:`STEPS`.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        registry: MigrationRegistry | None = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry if registry is not None else STEPS
        self._ledger = VersionLedger(adapter)
        self.state = RunnerState.IDLE
        self.current_step: int | None = None

    @property
    def ledger(self) -> VersionLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply_pending(self) -> MigrationResult:
        """Apply every step newer than the ledger, stopping at the first failure."""
        self.state = RunnerState.SCANNING
        version = self._ledger.read()
        result = MigrationResult(from_version=version, to_version=version)
        logger.info(
            "migration.scan",
            version=version,
            latest=self._registry.latest,
            pending=len(self._registry.pending(version)),
        )

        # A concurrent runner may move the ledger under us; rescan from its value.
        for _ in range(len(self._registry) + 1):
            try:
                for step in self._registry.pending(version):
                    self.state = RunnerState.APPLYING
                    self.current_step = step.ordinal
                    self._apply_step(step, version)
                    version = step.ordinal
                    result.applied.append(step.ordinal)
                    result.to_version = version
                break
            except ConcurrentModification as e:
                logger.warning(
                    "migration.ledger_moved", expected=e.expected, actual=e.actual
                )
                version = self._ledger.read()
                result.to_version = version
            except Exception as e:
                self.state = RunnerState.FAILED
                result.failed = self.current_step
                result.error = str(e)
                result.cause = e
                logger.error(
                    "migration.failed",
                    step=self.current_step,
                    version=version,
                    error=str(e),
                )
                return result

        self.state = RunnerState.IDLE
        self.current_step = None
        logger.info("migration.done", version=version, applied=result.applied)
        return result

    def current_version(self) -> int:
        return self._ledger.read()

    def get_pending(self) -> list[MigrationStep]:
        """Steps not yet applied."""
        return self._registry.pending(self._ledger.read())

    def status(self) -> dict[str, Any]:
        version = self._ledger.read()
        return {
            "version": version,
            "latest": self._registry.latest,
            "pending": [s.ordinal for s in self._registry.pending(version)],
            "state": self.state.value,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply_step(self, step: MigrationStep, prior: int) -> None:
        log = logger.bind(step=step.ordinal, description=step.description)
        log.info("migration.step.start")

        if self._adapter.supports_transactional_ddl:
            with self._adapter.transaction() as conn:
                if self._ledger.read(conn) != prior:
                    raise ConcurrentModification(prior, self._ledger.read(conn))
                for op in step.operations:
                    log.debug("migration.operation", operation=op.describe())
                    op.apply(self._adapter, conn)
                self._ledger.advance(prior, step.ordinal, conn)
        else:
            for op in step.operations:
                log.debug("migration.operation", operation=op.describe())
                with self._adapter.transaction() as conn:
                    op.apply(self._adapter, conn)
            self._ledger.advance(prior, step.ordinal)

        log.info("migration.applied")


__all__ = [
    "MigrationResult",
    "MigrationRunner",
    "RunnerState",
]
