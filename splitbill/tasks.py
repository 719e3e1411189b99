"""
Celery Tasks
Background tasks for exporting partial receipts.
"""

import time
from datetime import datetime

from splitbill.celery_worker import celery_app
from splitbill.core.config import get_logger
from splitbill.services.receipts.builder import Receipt
from splitbill.services.receipts.excel import ExcelReceiptExporter

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_receipt_to_excel(self, receipt_data: dict) -> dict:
    """
    Export a partial receipt to the Excel receipt ledger.
    This task runs asynchronously via Celery worker.

    Args:
        receipt_data: Receipt.to_dict() output

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    receipt_number = receipt_data.get('receipt_number', 'unknown')

    logger.info(f"Task {task_id}: exporting receipt {receipt_number}")
    start_time = time.time()

    try:
        result = ExcelReceiptExporter().export_receipt(Receipt.from_dict(receipt_data))

        elapsed = round(time.time() - start_time, 3)
        result['task_id'] = task_id
        result['processing_time_seconds'] = elapsed

        if result['success']:
            logger.info(f"Task {task_id}: receipt {receipt_number} done in {elapsed}s")
        else:
            logger.warning(f"Task {task_id}: receipt {receipt_number} failed - {result['message']}")

        return result

    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"Task {task_id}: receipt {receipt_number} error after {elapsed}s - {e}")

        # Celery will auto-retry based on configuration
        raise


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
