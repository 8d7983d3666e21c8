"""Out-of-band delivery of one-time codes.

Delivery is fire-and-forget from the caller's point of view: ``notify`` only
schedules or enqueues the work and never raises. A failed delivery leaves the
stored challenge in place; the user simply asks for another code.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from clarity.config import settings
from clarity.services.email import EmailService, email_service

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Hands a code to the user through some external channel."""

    @abstractmethod
    async def notify(self, email: str, code: str) -> None:
        """Start delivery of ``code`` to ``email`` without waiting for it."""


class EmailNotifier:
    """Delivers codes by email, synchronously. Used by the other notifiers."""

    def __init__(self, service: EmailService | None = None) -> None:
        self.service = service or email_service

    async def deliver(self, email: str, code: str) -> bool:
        sent = await self.service.send_otp_code(to=email, code=code)
        if not sent:
            logger.warning(f"Sign-in code delivery to {email} failed")
        return sent


class BackgroundNotifier(Notifier):
    """Runs delivery as an asyncio task in the serving process."""

    def __init__(self, delivery: EmailNotifier | None = None, timeout: float | None = None) -> None:
        self.delivery = delivery or EmailNotifier()
        self.timeout = timeout if timeout is not None else settings.notifier_timeout_seconds
        # Strong references so pending tasks aren't garbage collected
        self._tasks: set[asyncio.Task] = set()

    async def notify(self, email: str, code: str) -> None:
        task = asyncio.create_task(self._deliver(email, code))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, email: str, code: str) -> None:
        try:
            await asyncio.wait_for(self.delivery.deliver(email, code), timeout=self.timeout)
        except TimeoutError:
            logger.warning(f"Sign-in code delivery to {email} timed out after {self.timeout}s")
        except Exception:
            logger.exception(f"Sign-in code delivery to {email} raised")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Called on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class QueueNotifier(Notifier):
    """Enqueues delivery as a SAQ job processed by the worker."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout if timeout is not None else settings.notifier_timeout_seconds

    async def notify(self, email: str, code: str) -> None:
        from clarity.tasks.queue import queue

        try:
            await asyncio.wait_for(
                queue.enqueue("deliver_otp_code", email=email, code=code, retries=3),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Failed to enqueue sign-in code delivery for {email}: {e!r}")


def get_notifier() -> Notifier:
    """Get the configured notifier."""
    if settings.notifier_backend == "background":
        return BackgroundNotifier()
    if settings.notifier_backend == "queue":
        return QueueNotifier()
    raise ValueError(f"Unknown notifier backend: {settings.notifier_backend}")
