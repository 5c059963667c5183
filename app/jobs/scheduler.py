import os

from apscheduler.schedulers.background import BackgroundScheduler

from app.services.import_status import get_status_store


scheduler = BackgroundScheduler()


def purge_import_statuses(app) -> int:
    removed = get_status_store(app).purge_expired()
    if removed:
        app.logger.info("Purged %s expired import status entries", removed)
    return removed


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["STATUS_PURGE_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            purge_import_statuses,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="import_status_purge",
            replace_existing=True,
        )
        scheduler.start()
