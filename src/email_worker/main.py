"""Celery application that runs reminder ticks outside the API process."""

from celery import Celery

from cart_recovery.config import get_settings
from cart_recovery.log_config import configure_logging

settings = get_settings()
configure_logging(settings)

app = Celery(
    "email_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=["email_worker.tasks.cart_abandonment"],
)

# A tick may send many emails; it must finish well before the next one is due.
tick_limit = max(60, settings.reminder_interval_seconds - 60)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 3600,
    timezone="UTC",
    enable_utc=True,
    task_time_limit=tick_limit,
    task_soft_time_limit=tick_limit - 30,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="reminders",
)

app.conf.beat_schedule = {
    "run-cart-reminders": {
        "task": "email_worker.tasks.cart_abandonment.run_cart_reminders",
        "schedule": float(settings.reminder_interval_seconds),
        # Drop ticks that sat in the queue past the next one
        "options": {"expires": float(settings.reminder_interval_seconds)},
    },
}


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "reminders"])


if __name__ == "__main__":
    run()
