from celery import Celery

from tripc.core.config import settings
from tripc.core.log_config import configure_logging

configure_logging()


def broker_url(url: str) -> str:
    """Managed Redis over TLS (rediss://) must state ssl_cert_reqs or Celery refuses to start."""
    if not url.lower().startswith("rediss://") or "ssl_cert_reqs=" in url:
        return url
    return url + ("&" if "?" in url else "?") + "ssl_cert_reqs=CERT_NONE"


celery = Celery(
    "tripc",
    broker=broker_url(settings.REDIS_URL),
    backend=broker_url(settings.REDIS_URL),
    include=["tripc.tasks.jobs"],
)

celery.conf.update(
    timezone="Asia/Ho_Chi_Minh",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        # Capacity reads already ignore lapsed holds; this keeps counters and statuses tidy
        "expire-holds": {"task": "tripc.tasks.jobs.expire_holds", "schedule": 60.0},
        "retry-email-queue": {
            "task": "tripc.tasks.jobs.process_email_queue",
            "schedule": 120.0,
            "kwargs": {"limit": 50},
        },
    },
)
