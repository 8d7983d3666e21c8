"""Maintenance background tasks for auth storage hygiene.

Neither task is needed for correctness: expiry and revocation are checked
when a code or token is presented. They only keep the tables small.
"""

import logging
from typing import Any

from clarity.services.auth import get_session_service

logger = logging.getLogger(__name__)

# Timeout for maintenance tasks (10 minutes)
MAINTENANCE_TIMEOUT_SECONDS = 10 * 60


async def sweep_expired_challenges(ctx: dict[str, Any]) -> dict[str, Any]:
    """Delete expired and consumed sign-in challenges."""
    try:
        removed = await get_session_service().challenges.sweep()
    except Exception as e:
        error = f"Challenge sweep failed: {e}"
        logger.exception(error)
        return {"success": False, "error": error}

    logger.info(f"Challenge sweep complete: {removed} removed")
    return {"success": True, "challenges_removed": removed}


async def prune_refresh_tokens(ctx: dict[str, Any]) -> dict[str, Any]:
    """Delete refresh tokens that expired more than one token lifetime ago."""
    try:
        removed = await get_session_service().tokens.prune()
    except Exception as e:
        error = f"Refresh token prune failed: {e}"
        logger.exception(error)
        return {"success": False, "error": error}

    logger.info(f"Refresh token prune complete: {removed} removed")
    return {"success": True, "tokens_removed": removed}


# Set SAQ job timeouts
sweep_expired_challenges.timeout = MAINTENANCE_TIMEOUT_SECONDS  # type: ignore[attr-defined]
prune_refresh_tokens.timeout = MAINTENANCE_TIMEOUT_SECONDS  # type: ignore[attr-defined]
