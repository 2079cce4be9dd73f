"""
Payment status poller.

The browser never sees the Daraja webhook, so after an STK push the client
asks the API for the payment status until it settles:

    wait grace_period -> poll -> (non-terminal) wait interval -> poll ...
                              -> (error) wait error_backoff -> poll ...

Status payloads carry the server's expiresAt. While that deadline is in the
future the poller keeps going past max_polls, so the server decides when the
attempt has expired and a late confirmation is never hidden from the user.
Only when no deadline is known, or it has passed, does an exhausted budget
end the attempt as expired locally; the server record is left alone.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from aquabeacon.exceptions import PollTimeout
from aquabeacon.fsm.states import PaymentStatus

logger = logging.getLogger(__name__)

StatusFetcher = Callable[[str], Awaitable[Dict[str, Any]]]


def parse_deadline(value: Any) -> Optional[datetime]:
    """expiresAt from a status payload as an aware datetime, or None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        deadline = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return deadline


@dataclass
class PollResult:
    """One observation of a payment's status."""

    payment_id: str
    status: PaymentStatus
    polls: int
    data: Dict[str, Any] = field(default_factory=dict)
    timed_out: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class PaymentStatusPoller:
    """
    Polls one payment at a time.

    Starting a new payment cancels the loop for the previous one, and
    cancel() drops any pending timer so a closed checkout gets no updates.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        on_update: Optional[Callable[[PollResult], Any]] = None,
        grace_period: float = 3.0,
        interval: float = 3.0,
        error_backoff: float = 5.0,
        max_polls: int = 40,
    ):
        if max_polls < 1:
            raise ValueError("max_polls must be at least 1")
        self.fetch_status = fetch_status
        self.on_update = on_update
        self.grace_period = grace_period
        self.interval = interval
        self.error_backoff = error_backoff
        self.max_polls = max_polls
        self._task: Optional[asyncio.Task] = None
        self.payment_id: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, payment_id: str, expires_at: Optional[str] = None) -> asyncio.Task:
        """
        Begin polling `payment_id`, replacing any loop already running.

        `expires_at` is the expiresAt of the initiation response, if known.
        """
        self.cancel()
        self.payment_id = payment_id
        self._task = asyncio.get_running_loop().create_task(
            self._run(payment_id, parse_deadline(expires_at))
        )
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug(f"Cancelling status polling for {self.payment_id}")
            self._task.cancel()
        self._task = None

    async def wait(self, raise_on_timeout: bool = False) -> Optional[PollResult]:
        """
        Final result of the current loop, or None if it was cancelled.

        With raise_on_timeout, an exhausted poll budget raises PollTimeout.
        """
        task = self._task
        if task is None:
            return None
        try:
            result = await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return None

        if raise_on_timeout and result.timed_out:
            raise PollTimeout(f"Payment {result.payment_id} not confirmed after {result.polls} checks")
        return result

    async def _notify(self, result: PollResult) -> None:
        if self.on_update is None:
            return
        outcome = self.on_update(result)
        if inspect.isawaitable(outcome):
            await outcome

    def _budget_spent(self, polls: int, deadline: Optional[datetime]) -> bool:
        if polls < self.max_polls:
            return False
        return deadline is None or datetime.now(timezone.utc) >= deadline

    async def _run(self, payment_id: str, deadline: Optional[datetime] = None) -> PollResult:
        await asyncio.sleep(self.grace_period)

        polls = 0
        while True:
            polls += 1
            try:
                data = await self.fetch_status(payment_id)
            except Exception as e:
                # Network hiccups are retried, not fatal
                logger.warning(f"Status check {polls} for {payment_id} failed: {e}")
                if self._budget_spent(polls, deadline):
                    break
                await asyncio.sleep(self.error_backoff)
                continue

            try:
                status = PaymentStatus(data.get("status"))
            except ValueError:
                logger.warning(f"Unknown payment status {data.get('status')!r} for {payment_id}")
                status = PaymentStatus.PROCESSING

            deadline = parse_deadline(data.get("expiresAt")) or deadline
            result = PollResult(payment_id=payment_id, status=status, polls=polls, data=data)
            await self._notify(result)
            if result.is_terminal:
                return result

            if self._budget_spent(polls, deadline):
                break
            await asyncio.sleep(self.interval)

        logger.info(f"Gave up on payment {payment_id} after {polls} status checks")
        result = PollResult(
            payment_id=payment_id,
            status=PaymentStatus.EXPIRED,
            polls=polls,
            timed_out=True,
        )
        await self._notify(result)
        return result
