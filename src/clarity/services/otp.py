"""One-time code issuance."""

import logging
import secrets
from datetime import timedelta

from clarity.config import settings
from clarity.services.challenges import ChallengeStore
from clarity.services.notifier import Notifier

logger = logging.getLogger(__name__)


def generate_code(length: int) -> str:
    """Uniformly random zero-padded numeric code from the system CSPRNG."""
    return f"{secrets.randbelow(10**length):0{length}d}"


class OTPIssuer:
    """Creates challenges and hands their codes to a notifier."""

    def __init__(
        self,
        store: ChallengeStore,
        notifier: Notifier,
        *,
        length: int | None = None,
        ttl: timedelta | None = None,
        resend_interval: timedelta | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.length = length or settings.otp_length
        self.ttl = ttl or timedelta(seconds=settings.otp_expiration_seconds)
        self.resend_interval = (
            resend_interval
            if resend_interval is not None
            else timedelta(seconds=settings.otp_resend_interval_seconds)
        )

    async def issue(self, email: str) -> str:
        """Issue a fresh code for ``email``, superseding any earlier one.

        Raises:
            RateLimited: the previous code is younger than the resend interval
        """
        code = generate_code(self.length)
        challenge = await self.store.put_if_idle(email, code, self.ttl, self.resend_interval)
        logger.info(f"Issued sign-in code for {email}, expires {challenge.expires_at.isoformat()}")

        await self.notifier.notify(email, code)
        return code
