"""Tests for the Celery receipt export task."""

from splitbill.celery_worker import RECEIPTS_QUEUE, create_celery_app
from splitbill.core.config import get_settings
from splitbill.services.receipts import ExcelReceiptExporter, build_partial_receipt
from splitbill.tasks import export_receipt_to_excel, health_check
from tests.factories import make_payment


def test_export_task_writes_the_receipt(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path))
    get_settings.cache_clear()
    receipt = build_partial_receipt(make_payment(42, 1850))

    result = export_receipt_to_excel.apply(args=(receipt.to_dict(),)).get()

    assert result["success"] is True
    assert result["receipt_number"] == "P-42"
    assert "processing_time_seconds" in result
    rows = ExcelReceiptExporter().get_all_receipts()
    assert [r["receipt_number"] for r in rows] == ["P-42"]


def test_health_check_task():
    assert health_check.apply().get()["status"] == "healthy"


def test_celery_app_follows_settings(monkeypatch):
    monkeypatch.setenv("EXPORT_WORKERS", "2")
    monkeypatch.setenv("EXPORT_RESULT_TTL", "600")
    get_settings.cache_clear()

    app = create_celery_app(get_settings())

    assert app.conf.worker_concurrency == 2
    assert app.conf.result_expires == 600
    assert app.conf.task_routes["splitbill.tasks.export_receipt_to_excel"] == {"queue": RECEIPTS_QUEUE}
