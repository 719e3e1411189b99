"""Partial receipts and the Excel receipt ledger."""

from splitbill.services.receipts.builder import (
    Receipt,
    ReceiptLine,
    build_partial_receipt,
    render_receipt_text,
)
from splitbill.services.receipts.excel import ExcelReceiptExporter

__all__ = [
    "Receipt",
    "ReceiptLine",
    "build_partial_receipt",
    "render_receipt_text",
    "ExcelReceiptExporter",
]
