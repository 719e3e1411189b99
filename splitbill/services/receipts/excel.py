"""
Excel Receipt Ledger with Concurrency Control

Appends partial receipts to an Excel workbook the accountant reads.
Several Celery workers may export at the same time, so every
read-modify-write of the workbook happens under a file lock.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from splitbill.core.config import Settings, get_settings
from splitbill.services.receipts.builder import Receipt
from splitbill.services.settlement.money import from_cents

logger = logging.getLogger(__name__)


class ExcelReceiptExporter:
    """Process-safe Excel receipt ledger."""

    RECEIPT_COLUMNS = [
        "receipt_number",
        "payment_id",
        "session_id",
        "date",
        "time",
        "items",
        "subtotal",
        "iva_rate",
        "iva_amount",
        "total_amount",
        "currency",
        "payment_method",
        "smac",
        "notes",
        "exported_at",
    ]

    def __init__(self, settings: Optional[Settings] = None, data_directory: Optional[Path] = None):
        settings = settings or get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.file_path = self.data_dir / settings.receipts_filename
        self.lock_path = self.data_dir / f"{settings.receipts_filename}.lock"
        self.lock_timeout = settings.excel_lock_timeout
        self.currency = settings.currency.upper()

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if self.file_path.exists():
            try:
                return pd.read_excel(self.file_path, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {self.file_path}: {e}")
                return pd.DataFrame(columns=self.RECEIPT_COLUMNS)
        return pd.DataFrame(columns=self.RECEIPT_COLUMNS)

    def export_receipt(self, receipt: Receipt) -> dict[str, Any]:
        """
        Append one receipt to the workbook.

        A receipt number that is already in the workbook is not added twice.

        Returns:
            dict with success, message, receipt_number, exported_at
        """
        self._ensure_data_dir()

        result = {
            "success": False,
            "message": "",
            "receipt_number": receipt.receipt_number,
            "exported_at": None,
        }

        try:
            lock = FileLock(str(self.lock_path), timeout=self.lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for receipt {receipt.receipt_number}")

                df = self._load_or_create_df()

                if receipt.receipt_number in set(df["receipt_number"].astype(str)):
                    result["success"] = True
                    result["message"] = f"Receipt {receipt.receipt_number} already exported"
                    logger.info(result["message"])
                    return result

                export_time = datetime.now().isoformat()
                new_row = {
                    "receipt_number": receipt.receipt_number,
                    "payment_id": receipt.payment_id,
                    "session_id": receipt.session_id,
                    "date": receipt.date,
                    "time": receipt.time,
                    "items": ", ".join(f"{line.quantity}x {line.name}" for line in receipt.lines),
                    "subtotal": float(from_cents(receipt.subtotal_cents)),
                    "iva_rate": receipt.iva_rate,
                    "iva_amount": float(from_cents(receipt.iva_cents)),
                    "total_amount": float(from_cents(receipt.total_cents)),
                    "currency": self.currency,
                    "payment_method": receipt.payment_method,
                    "smac": receipt.fiscal_flag,
                    "notes": receipt.notes,
                    "exported_at": export_time,
                }

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(self.file_path), index=False, engine="openpyxl")

                logger.info(f"Receipt {receipt.receipt_number} exported to Excel")

                result["success"] = True
                result["message"] = f"Receipt {receipt.receipt_number} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for receipt {receipt.receipt_number}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for receipt {receipt.receipt_number}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting receipt {receipt.receipt_number}")

        return result

    def get_all_receipts(self) -> list[dict[str, Any]]:
        """Get all exported receipts."""
        self._ensure_data_dir()

        if not self.file_path.exists():
            return []

        try:
            df = pd.read_excel(self.file_path, engine="openpyxl")
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading receipts: {e}")
            return []
