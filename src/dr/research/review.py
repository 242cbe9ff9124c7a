"""
Human article review rendezvous.

A run pauses on ``wait_for_review(report_id)`` until an external reviewer
calls ``submit`` with per-section excluded URLs, or the wait is cancelled or
times out. Pending reviews live in process memory only.
"""

from __future__ import annotations

import asyncio

from dr.exceptions import ReviewCancelledError, ReviewTimeoutError
from dr.logging import get_logger
from dr.types import ReviewDecisions

logger = get_logger(__name__)


class ReviewRegistry:
    """Registry of pending reviews keyed by report ID.

    One instance per process, owned by the service and passed to each deep
    pipeline run. Each run registers at most once, so a second registration
    for a pending report ID is a caller error.
    """

    def __init__(self, default_timeout: float | None = None) -> None:
        """
        Args:
            default_timeout: Seconds before a wait is cancelled automatically.
                None waits indefinitely.
        """
        self.default_timeout = default_timeout
        self._pending: dict[str, asyncio.Future[ReviewDecisions]] = {}

    def has_pending(self, report_id: str) -> bool:
        future = self._pending.get(report_id)
        return future is not None and not future.done()

    @property
    def pending_ids(self) -> list[str]:
        return [rid for rid, fut in self._pending.items() if not fut.done()]

    async def wait_for_review(
        self,
        report_id: str,
        timeout: float | None = None,
    ) -> ReviewDecisions:
        """Suspend until decisions for ``report_id`` are submitted.

        Args:
            report_id: Report awaiting review.
            timeout: Overrides ``default_timeout`` for this wait.

        Returns:
            Section ID -> excluded URLs, exactly as submitted.

        Raises:
            ReviewCancelledError: ``cancel`` was called.
            ReviewTimeoutError: No decision arrived within the timeout.
        """
        if self.has_pending(report_id):
            raise RuntimeError(f"Review already pending for {report_id}")

        future: asyncio.Future[ReviewDecisions] = asyncio.get_running_loop().create_future()
        self._pending[report_id] = future
        timeout = self.default_timeout if timeout is None else timeout
        logger.info("Waiting for article review", report_id=report_id, timeout=timeout)

        try:
            if timeout is None:
                return await future
            try:
                return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
            except asyncio.TimeoutError:
                if future.done() and not future.cancelled() and future.exception() is None:
                    return future.result()
                minutes = timeout / 60
                raise ReviewTimeoutError(
                    f"Article review timed out after {minutes:g} minutes",
                    context={"report_id": report_id, "timeout_seconds": timeout},
                ) from None
        finally:
            if self._pending.get(report_id) is future:
                del self._pending[report_id]
            if not future.done():
                future.cancel()

    def submit(self, report_id: str, decisions: ReviewDecisions) -> bool:
        """Resolve the pending wait for ``report_id``.

        Returns:
            False when nothing is pending (treat as a conflict, not a retry).
        """
        future = self._pending.pop(report_id, None)
        if future is None or future.done():
            logger.warning("Review submitted with nothing pending", report_id=report_id)
            return False

        future.set_result(decisions)
        logger.info(
            "Article review submitted",
            report_id=report_id,
            excluded=sum(len(urls) for urls in decisions.values()),
        )
        return True

    def cancel(self, report_id: str, reason: str = "no reason given") -> bool:
        """Fail the pending wait for ``report_id`` with ReviewCancelledError.

        Returns:
            Whether a wait was pending.
        """
        future = self._pending.pop(report_id, None)
        if future is None or future.done():
            return False

        future.set_exception(ReviewCancelledError(reason, context={"report_id": report_id}))
        logger.info("Article review cancelled", report_id=report_id)
        return True

    def cancel_all(self, reason: str = "service shutting down") -> int:
        """Cancel every pending wait. Returns how many were cancelled."""
        return sum(self.cancel(rid, reason) for rid in list(self._pending))
