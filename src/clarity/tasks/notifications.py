"""Sign-in code delivery task."""

import logging
from typing import Any

from clarity.services.notifier import EmailNotifier
from clarity.tasks.queue import DELIVERY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


async def deliver_otp_code(ctx: dict[str, Any], *, email: str, code: str) -> dict[str, Any]:
    """Send a sign-in code by email.

    A failed send raises so SAQ retries it; the stored challenge is untouched
    either way.
    """
    sent = await EmailNotifier().deliver(email, code)
    if not sent:
        raise RuntimeError(f"Sign-in code delivery to {email} failed")
    return {"success": True}


deliver_otp_code.timeout = DELIVERY_TIMEOUT_SECONDS  # type: ignore[attr-defined]
