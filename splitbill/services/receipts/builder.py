"""
Partial Receipt Builder

Turns one split payment into a printable receipt. The engine only supplies
the data; printing is done by whatever consumes the receipt (the terminal's
printer driver, the Excel ledger, ...).

Receipt numbers are "P-{payment id}". Item-based payments list the settled
lines; amount-based payments (manual amount, equal split) print a single
"Partial payment" line.

Author: Khalil Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from splitbill.core.config import Settings, get_settings
from splitbill.services.settlement.entities import SessionPayment
from splitbill.services.settlement.money import format_cents

PARTIAL_PAYMENT_LINE = "Partial payment"
RECEIPT_WIDTH = 40


@dataclass(frozen=True)
class ReceiptLine:
    name: str
    quantity: int
    unit_price_cents: int

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class Receipt:
    """Printable data of one receipt."""
    receipt_number: str
    payment_id: int
    session_id: int
    date: str
    time: str
    shop_name: str
    shop_address: Optional[str]
    shop_phone: Optional[str]
    lines: tuple[ReceiptLine, ...]
    total_cents: int
    iva_rate: float
    iva_cents: int
    payment_method: str
    fiscal_flag: bool
    notes: Optional[str] = None

    @property
    def subtotal_cents(self) -> int:
        return self.total_cents - self.iva_cents

    def to_dict(self) -> dict:
        return {
            "receipt_number": self.receipt_number,
            "payment_id": self.payment_id,
            "session_id": self.session_id,
            "date": self.date,
            "time": self.time,
            "shop_name": self.shop_name,
            "shop_address": self.shop_address,
            "shop_phone": self.shop_phone,
            "items": [
                {
                    "name": line.name,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "total_cents": line.total_cents,
                }
                for line in self.lines
            ],
            "subtotal_cents": self.subtotal_cents,
            "iva_rate": self.iva_rate,
            "iva_cents": self.iva_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "fiscal_flag": self.fiscal_flag,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Receipt":
        """Rebuild a receipt from to_dict() output (Celery task payloads)."""
        return cls(
            receipt_number=data["receipt_number"],
            payment_id=data["payment_id"],
            session_id=data["session_id"],
            date=data["date"],
            time=data["time"],
            shop_name=data["shop_name"],
            shop_address=data.get("shop_address"),
            shop_phone=data.get("shop_phone"),
            lines=tuple(
                ReceiptLine(
                    name=item["name"],
                    quantity=item["quantity"],
                    unit_price_cents=item["unit_price_cents"],
                )
                for item in data["items"]
            ),
            total_cents=data["total_cents"],
            iva_rate=data["iva_rate"],
            iva_cents=data["iva_cents"],
            payment_method=data["payment_method"],
            fiscal_flag=data["fiscal_flag"],
            notes=data.get("notes"),
        )


def included_iva_cents(total_cents: int, iva_rate: float) -> int:
    """VAT contained in a tax-inclusive amount, rounded half-up to the cent."""
    rate = Decimal(str(iva_rate)) / 100
    net = Decimal(total_cents) / (1 + rate)
    return total_cents - int(net.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_partial_receipt(payment: SessionPayment, settings: Optional[Settings] = None) -> Receipt:
    """
    Build the receipt of one split payment.

    Args:
        payment: Committed ledger entry
        settings: Shop details and IVA rate (defaults to the app settings)

    Returns:
        Receipt
    """
    settings = settings or get_settings()

    if payment.items:
        lines = tuple(
            ReceiptLine(name=item.name, quantity=item.quantity, unit_price_cents=item.unit_price_cents)
            for item in payment.items
        )
    else:
        lines = (ReceiptLine(name=PARTIAL_PAYMENT_LINE, quantity=1, unit_price_cents=payment.amount_cents),)

    return Receipt(
        receipt_number=f"P-{payment.id}",
        payment_id=payment.id,
        session_id=payment.session_id,
        date=payment.paid_at.strftime("%d/%m/%Y"),
        time=payment.paid_at.strftime("%H:%M"),
        shop_name=settings.shop_name,
        shop_address=settings.shop_address,
        shop_phone=settings.shop_phone,
        lines=lines,
        total_cents=payment.amount_cents,
        iva_rate=settings.iva_rate,
        iva_cents=included_iva_cents(payment.amount_cents, settings.iva_rate),
        payment_method=payment.method.value,
        fiscal_flag=payment.fiscal_flag,
        notes=payment.notes,
    )


def render_receipt_text(receipt: Receipt, width: int = RECEIPT_WIDTH) -> str:
    """Fixed-width text form for thermal printers."""

    def row(left: str, right: str) -> str:
        room = width - len(right) - 1
        return f"{left[:room]:<{room}} {right}"

    rule = "-" * width
    out = [receipt.shop_name.center(width)]
    if receipt.shop_address:
        out.append(receipt.shop_address.center(width))
    if receipt.shop_phone:
        out.append(f"Tel. {receipt.shop_phone}".center(width))
    out.append(rule)
    out.append(row(f"Receipt {receipt.receipt_number}", f"{receipt.date} {receipt.time}"))
    out.append(rule)

    for line in receipt.lines:
        out.append(row(f"{line.quantity}x {line.name}", format_cents(line.total_cents)))
        if line.quantity > 1:
            out.append(f"   @ {format_cents(line.unit_price_cents)}")

    out.append(rule)
    out.append(row("Subtotal", format_cents(receipt.subtotal_cents)))
    out.append(row(f"IVA {receipt.iva_rate:g}%", format_cents(receipt.iva_cents)))
    out.append(row("TOTAL", format_cents(receipt.total_cents)))
    out.append(row("Paid by", receipt.payment_method.upper()))
    if receipt.fiscal_flag:
        out.append("SMAC registered".center(width))
    if receipt.notes:
        out.append(receipt.notes[:width])
    out.append(rule)
    out.append("Thank you!".center(width))
    return "\n".join(out)
