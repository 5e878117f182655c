from tripc.tasks.celery_app import celery
from tripc.tasks import worker_jobs

@celery.task(name="tripc.tasks.jobs.expire_holds")
def expire_holds():
    return worker_jobs.expire_holds()


@celery.task(name="tripc.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)
