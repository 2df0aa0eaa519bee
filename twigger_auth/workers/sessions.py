"""Session maintenance background workers."""

import logging

from arq import cron

from twigger_auth.config import get_settings
from twigger_auth.database import async_session_maker
from twigger_auth.services.session_service import SessionService
from twigger_auth.workers.settings import get_redis_settings

logger = logging.getLogger(__name__)


async def cleanup_expired_sessions(ctx: dict) -> dict:
    """
    Periodic job deleting sessions whose expiry has passed.
    Revoked sessions are kept until they expire as well.
    """
    if not get_settings().session_cleanup_enabled:
        return {"deleted": 0}

    session_maker = ctx.get("session_maker", async_session_maker)
    async with session_maker() as db:
        try:
            deleted = await SessionService(db).delete_expired()
            await db.commit()
        except Exception:
            logger.exception("Expired session cleanup failed")
            await db.rollback()
            raise

    return {"deleted": deleted}


class WorkerSettings:
    """arq worker settings for session maintenance."""

    functions = [cleanup_expired_sessions]

    cron_jobs = [
        # Hourly, at minute 15
        cron(cleanup_expired_sessions, minute=15),
    ]

    redis_settings = get_redis_settings()
