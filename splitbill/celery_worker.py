"""
Celery Worker Configuration

Receipt exports run on their own queue so a slow Excel ledger never holds
up health checks. The ledger is one file behind a file lock, so the export
worker pool stays small (EXPORT_WORKERS, 1 by default).

Run with:
    celery -A splitbill.celery_worker worker -Q receipts,celery

Author: Khalil Bannouri
Version: 1.0.0
"""

from celery import Celery

from splitbill.core.config import Settings, get_settings

RECEIPTS_QUEUE = "receipts"


def create_celery_app(settings: Settings) -> Celery:
    """Build the Celery app on the configured Redis broker."""
    app = Celery(
        'splitbill_worker',
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=['splitbill.tasks']
    )

    app.conf.update(
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,

        task_routes={
            'splitbill.tasks.export_receipt_to_excel': {'queue': RECEIPTS_QUEUE},
        },

        # One receipt at a time per process; the lock serialises writers anyway
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.export_workers,
        result_expires=settings.export_result_ttl,

        # A receipt is only acknowledged once it is in the ledger
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        broker_connection_retry_on_startup=True,
    )
    return app


celery_app = create_celery_app(get_settings())


if __name__ == '__main__':
    celery_app.start()
