"""Periodic auto-escalation scheduler.

A sweep snapshots every open, non-escalated complaint, asks the policy
engine which ones breach a threshold, and escalates each candidate via
the lifecycle state machine as the SYSTEM principal.

Exclusion
    Only one sweep runs at a time.  A second request while one is in
    flight is rejected with :class:`SweepInProgressError` rather than
    queued.

Idempotence
    Escalated complaints are never candidates, and every escalation is
    committed against the version seen in the snapshot.  A complaint a
    human touched mid-sweep fails with :class:`ConflictError`, which is
    recorded in the report and picked up again by the next sweep.

Background mode
    :meth:`EscalationScheduler.start` runs sweeps every
    ``scheduling_interval_seconds`` in an ``asyncio`` task until
    :meth:`EscalationScheduler.stop` is called.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from src.models.complaint import Complaint
from src.models.enums import EscalationSource, SweepTrigger
from src.models.escalation import (
    EscalationConfig,
    EscalationDecision,
    EscalationStats,
    SweepError,
    SweepResult,
)
from src.models.user import SYSTEM_PRINCIPAL
from src.services.errors import ResolveDeskError, SweepInProgressError
from src.services.escalation_policy import evaluate, find_candidates
from src.services.lifecycle import Escalate, LifecycleStateMachine
from src.services.repository import ComplaintRepository

logger = structlog.get_logger(__name__)


def _is_open(complaint: Complaint) -> bool:
    return not complaint.is_terminal and not complaint.is_escalated


# ---------------------------------------------------------------------------
# EscalationScheduler
# ---------------------------------------------------------------------------


class EscalationScheduler:
    """Runs escalation sweeps on demand and on a fixed interval.

    Parameters
    ----------
    complaints:
        Complaint store to snapshot.
    machine:
        State machine used to apply each escalation.
    config:
        Initial thresholds; replace with :meth:`reload_config`.
    clock:
        Returns the current UTC time; injectable for tests.
    initial_delay_seconds:
        Pause before the first background sweep after :meth:`start`.
    """

    __slots__ = (
        "_clock",
        "_complaints",
        "_config",
        "_initial_delay",
        "_last_result",
        "_machine",
        "_stop_event",
        "_sweep_lock",
        "_task",
    )

    def __init__(
        self,
        complaints: ComplaintRepository,
        machine: LifecycleStateMachine,
        config: EscalationConfig,
        clock: Callable[[], datetime] | None = None,
        initial_delay_seconds: float = 0.0,
    ) -> None:
        self._complaints = complaints
        self._machine = machine
        self._config = config
        self._clock = clock or (lambda: datetime.now(UTC))
        self._initial_delay = initial_delay_seconds
        self._sweep_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._last_result: SweepResult | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EscalationConfig:
        return self._config

    @property
    def last_result(self) -> SweepResult | None:
        """Report of the most recently finished sweep, if any."""
        return self._last_result

    @property
    def is_running(self) -> bool:
        """Whether the background loop is active."""
        return self._task is not None and not self._task.done()

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_lock.locked()

    def reload_config(self, config: EscalationConfig) -> EscalationConfig:
        """Swap in new thresholds.  A sweep already in flight keeps the old ones."""
        previous, self._config = self._config, config
        logger.info(
            "scheduler.config_reloaded",
            enabled=config.enabled,
            interval_s=config.scheduling_interval_seconds,
            changed=previous != config,
        )
        return config

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def run_sweep(self, trigger: SweepTrigger = SweepTrigger.MANUAL) -> SweepResult:
        """Run one sweep and return its report.

        Raises
        ------
        SweepInProgressError
            Another sweep has not finished yet.
        """
        # No await between the check and the acquire: overlapping callers
        # are rejected deterministically.
        if self._sweep_lock.locked():
            logger.info("scheduler.sweep_rejected", trigger=trigger.value)
            raise SweepInProgressError("An escalation sweep is already running")
        async with self._sweep_lock:
            result = await self._sweep(trigger)
        self._last_result = result
        return result

    async def _sweep(self, trigger: SweepTrigger) -> SweepResult:
        config = self._config
        now = self._clock()
        result = SweepResult(trigger=trigger, started_at=now)
        logger.info("scheduler.sweep_started", trigger=trigger.value)

        snapshot = await self._complaints.list(_is_open)
        candidates = find_candidates(snapshot, config, now)
        result.scanned = len(snapshot)
        result.candidates = len(candidates)

        semaphore = asyncio.Semaphore(config.sweep_concurrency)

        async def _bounded(complaint: Complaint, decision: EscalationDecision) -> SweepError | None:
            async with semaphore:
                return await self._escalate_one(complaint, decision, config)

        outcomes = await asyncio.gather(*(_bounded(c, d) for c, d in candidates))
        for (complaint, _), error in zip(candidates, outcomes, strict=True):
            if error is None:
                result.escalated_ids.append(complaint.id)
            else:
                result.errors.append(error)
        result.escalated = len(result.escalated_ids)
        result.finished_at = self._clock()

        logger.info(
            "scheduler.sweep_complete",
            trigger=trigger.value,
            scanned=result.scanned,
            candidates=result.candidates,
            escalated=result.escalated,
            errors=len(result.errors),
            duration_s=round(result.duration_seconds, 3),
        )
        return result

    async def _escalate_one(
        self,
        complaint: Complaint,
        decision: EscalationDecision,
        config: EscalationConfig,
    ) -> SweepError | None:
        transition = Escalate(
            reason=decision.detail or decision.reason_code.value,
            priority=decision.suggested_priority,
            target_id=config.auto_escalation_target_id,
            source=EscalationSource.AUTOMATED,
            force_status=config.escalation_sets_status,
            reason_code=decision.reason_code,
        )
        # The timeout bounds the commit only; notifying happens afterwards.
        try:
            _, event = await asyncio.wait_for(
                self._machine.commit_transition(
                    complaint.id,
                    transition,
                    SYSTEM_PRINCIPAL,
                    expected_version=complaint.version,
                ),
                timeout=config.per_candidate_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("scheduler.escalation_timeout", complaint_id=complaint.id)
            return SweepError(
                complaint_id=complaint.id,
                error_type="TimeoutError",
                message=f"Escalation did not finish within {config.per_candidate_timeout_seconds}s",
            )
        except ResolveDeskError as exc:
            logger.info(
                "scheduler.escalation_skipped",
                complaint_id=complaint.id,
                error=type(exc).__name__,
                reason=exc.message,
            )
            return SweepError(complaint_id=complaint.id, error_type=type(exc).__name__, message=exc.message)
        except Exception as exc:
            logger.error("scheduler.escalation_failed", complaint_id=complaint.id, exc_info=True)
            return SweepError(complaint_id=complaint.id, error_type=type(exc).__name__, message=str(exc))

        logger.info(
            "scheduler.complaint_escalated",
            complaint_id=complaint.id,
            reason=decision.reason_code.value,
            priority=decision.suggested_priority.value,
        )
        await self._machine.publish(event)
        return None

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    async def candidates(self) -> list[tuple[Complaint, EscalationDecision]]:
        """Complaints the next sweep would try to escalate, with reasons."""
        snapshot = await self._complaints.list(_is_open)
        return find_candidates(snapshot, self._config, self._clock())

    async def stats(self) -> EscalationStats:
        now = self._clock()
        complaints = await self._complaints.list()
        escalated_at = [c.escalated_at for c in complaints if c.is_escalated and c.escalated_at is not None]
        day_ago = now - timedelta(hours=24)
        week_ago = now - timedelta(days=7)
        pending = sum(1 for c in complaints if evaluate(c, self._config, now).is_candidate)
        return EscalationStats(
            total_escalated=sum(1 for c in complaints if c.is_escalated),
            escalated_last_24_hours=sum(1 for t in escalated_at if t >= day_ago),
            escalated_last_week=sum(1 for t in escalated_at if t >= week_ago),
            pending_escalation=pending,
        )

    def health_check(self) -> dict:
        last = self._last_result
        return {
            "status": "UP",
            "service": "Auto-escalation",
            "timestamp": self._clock().isoformat(),
            "enabled": self._config.enabled,
            "background_running": self.is_running,
            "sweep_in_progress": self.is_sweeping,
            "scheduling_interval": self._config.scheduling_interval_label,
            "last_sweep_finished_at": last.finished_at.isoformat() if last and last.finished_at else None,
        }

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop.  No-op if it is already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="escalation-scheduler")
        logger.info("scheduler.background_started", interval_s=self._config.scheduling_interval_seconds)

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal the loop to exit and wait for it, cancelling if it hangs."""
        task, self._task = self._task, None
        if task is None:
            return
        logger.info("scheduler.stopping")
        self._stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except (asyncio.CancelledError, TimeoutError):
            task.cancel()
        logger.info("scheduler.stopped")

    async def _wait_for_stop(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _run_loop(self) -> None:
        try:
            if self._initial_delay and await self._wait_for_stop(self._initial_delay):
                return
            while not self._stop_event.is_set():
                if self._config.enabled:
                    await self._safe_run()
                else:
                    logger.debug("scheduler.sweep_skipped_disabled")
                if await self._wait_for_stop(self._config.scheduling_interval_seconds):
                    break
        except asyncio.CancelledError:
            logger.info("scheduler.background_cancelled")
            raise
        finally:
            logger.info("scheduler.background_stopped")

    async def _safe_run(self) -> SweepResult | None:
        try:
            return await self.run_sweep(SweepTrigger.SCHEDULED)
        except SweepInProgressError:
            logger.info("scheduler.scheduled_sweep_skipped", reason="sweep_in_progress")
        except Exception:
            logger.error("scheduler.sweep_failed", exc_info=True)
        return None
