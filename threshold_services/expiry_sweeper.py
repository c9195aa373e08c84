"""
ExpirySweeper -- in-process polling loop that expires overdue requests.

Contract:
    Every ``interval_seconds`` calls ``ThresholdControlService.sweep_expired``,
    which moves each PENDING request past its deadline to EXPIRED (one
    audit event and one notification each).

Architecture: threshold_services.  Lazy expiry in approve/reject already
    guarantees no overdue request is ever decided; the sweeper only makes
    the EXPIRED state visible without waiting for a decision attempt.

Invariants enforced:
    - A failed tick is logged and the loop keeps running.
    - ``stop()`` lets the current tick finish.
"""

from __future__ import annotations

import threading
from uuid import UUID

from threshold_kernel.logging_config import get_logger
from threshold_services.control_service import ThresholdControlService

logger = get_logger("services.expiry_sweeper")


class ExpirySweeper:
    """Background sweeper for PENDING threshold change requests.

    Non-goals:
        - NOT distributed.  Several sweepers against one database are safe
          (the EXPIRED transition is conditional) but redundant.
    """

    def __init__(
        self,
        service: ThresholdControlService,
        interval_seconds: float = 60.0,
    ):
        self._service = service
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> list[UUID]:
        """Run one sweep (public for testing).

        Returns the ids expired by this sweep.
        """
        try:
            result = self._service.sweep_expired()
        except Exception:
            logger.exception("expiry_sweep_failed")
            return []

        if not result.is_success:
            logger.warning(
                "expiry_sweep_rejected",
                extra={"code": result.error.code, "reason": result.error.message},
            )
            return []
        if result.data:
            logger.info(
                "expiry_sweep_completed",
                extra={"expired_count": len(result.data)},
            )
        return result.data

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="threshold-expiry-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("expiry_sweeper_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loop to exit."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("expiry_sweeper_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
