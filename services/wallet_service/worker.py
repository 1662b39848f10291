"""ARQ worker for cashback expiry and delivered-order reconciliation."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()


async def task_expire_cashback(ctx: dict):
    from services.wallet_service.tasks import expire_cashback

    logger.info("Running: expire_cashback")
    await expire_cashback()


async def task_reconcile_delivered(ctx: dict):
    from services.wallet_service.tasks import reconcile_delivered

    logger.info("Running: reconcile_delivered")
    await reconcile_delivered()


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup

    functions = [
        task_expire_cashback,
        task_reconcile_delivered,
    ]

    cron_jobs = [
        cron(task_expire_cashback, minute={7}, run_at_startup=True),
        cron(
            task_reconcile_delivered,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
    ]
