from __future__ import annotations

import time

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from fadebot.config import Settings
from fadebot.controller import Controller
from fadebot.logging_setup import get_logger

logger = get_logger("scheduler")


def _run_selection_job(controller: Controller) -> None:
    try:
        controller.run_selection()
    except Exception:
        # keep the scheduler alive; the next tick retries
        logger.exception("Scheduled selection failed")


def start_scheduler(controller: Controller, *, settings: Settings, cron: str | None = None) -> BackgroundScheduler:
    cron_expr = cron or settings.SCHEDULE_CRON
    scheduler = BackgroundScheduler(timezone=settings.ACTIVITY_TIMEZONE)
    scheduler.add_job(
        _run_selection_job,
        CronTrigger.from_crontab(cron_expr, timezone=settings.ACTIVITY_TIMEZONE),
        args=[controller],
        name="fadebot_run_selection",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    scheduler.start()
    logger.info("Scheduler started with cron: %s", cron_expr)
    return scheduler


def run_schedule(
    controller: Controller,
    *,
    settings: Settings,
    cron: str | None = None,
    enable: bool = False,
) -> None:
    if not enable:
        logger.info("Schedule disabled. Pass --enable to start the scheduler.")
        print("Schedule disabled. Pass --enable to start the scheduler.")
        return

    scheduler = start_scheduler(controller, settings=settings, cron=cron)
    print(f"Scheduler started with cron: {cron or settings.SCHEDULE_CRON}")

    # Keep the process alive until interrupted
    try:
        while True:
            time.sleep(1.0)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped.")
        scheduler.shutdown()
