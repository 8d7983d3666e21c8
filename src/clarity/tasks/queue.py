"""SAQ queue configuration for background tasks."""

from saq import CronJob, Queue

from clarity.config import settings

# Main task queue
queue = Queue.from_url(settings.redis_url)

# Code delivery must finish well inside the code's own lifetime
DELIVERY_TIMEOUT_SECONDS = 60


def get_queue_settings() -> dict:
    """Get SAQ queue settings for the worker."""
    # Import here to avoid circular imports
    from clarity.tasks.maintenance import prune_refresh_tokens, sweep_expired_challenges
    from clarity.tasks.notifications import deliver_otp_code

    return {
        "queue": queue,
        "functions": [
            deliver_otp_code,
            sweep_expired_challenges,
            prune_refresh_tokens,
        ],
        "cron_jobs": [
            CronJob(sweep_expired_challenges, cron="*/10 * * * *"),
            CronJob(prune_refresh_tokens, cron="0 3 * * *"),
        ],
        "concurrency": 10,
        "startup": startup,
        "shutdown": shutdown,
    }


async def startup(_ctx: dict) -> None:
    """Called when worker starts."""
    pass


async def shutdown(_ctx: dict) -> None:
    """Called when worker shuts down."""
    pass
