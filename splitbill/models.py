"""
SQLAlchemy Database Models

Tables of the split-bill settlement engine:
- Table sessions (dining tabs) with cover charge
- Orders ("comande") and their item lines
- Append-only split payment ledger with item breakdown

Money columns hold integer cents.

Author: Khalil Bannouri
Version: 1.0.0
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from splitbill.database import Base
from splitbill.services.settlement.entities import (
    CloseMethod,
    OrderStatus,
    PaymentMethod,
    SessionStatus,
)


class TableSession(Base):
    """
    A dining tab spanning one or more orders at a table.
    """
    __tablename__ = "table_sessions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    table_name = Column(String(50), nullable=True)

    # =========================================================================
    # TOTALS
    # =========================================================================
    total_cents = Column(Integer, nullable=False, default=0)
    covers = Column(Integer, nullable=False, default=0)
    cover_unit_cents = Column(Integer, nullable=False, default=0)
    cover_included = Column(Boolean, nullable=False, default=True)

    # =========================================================================
    # STATUS
    # =========================================================================
    status = Column(
        Enum(SessionStatus),
        default=SessionStatus.OPEN,
        nullable=False,
        index=True
    )
    fiscal_flag = Column(Boolean, nullable=False, default=False)
    close_method = Column(Enum(CloseMethod), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    opened_at = Column(DateTime(timezone=True), server_default=func.now())
    closed_at = Column(DateTime(timezone=True), nullable=True)

    orders = relationship("Order", back_populates="session", lazy="selectin")
    payments = relationship("SessionPaymentRow", back_populates="session", lazy="noload")

    def __repr__(self):
        return f"<TableSession #{self.id} - {self.table_name} - {self.status.value}>"


class Order(Base):
    """
    One ticket of a session, or a standalone order (session_id NULL).
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True, index=True)
    order_number = Column(Integer, nullable=False, default=1)

    total_cents = Column(Integer, nullable=False, default=0)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False)
    fiscal_flag = Column(Boolean, nullable=False, default=False)
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    session = relationship("TableSession", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id")

    def __repr__(self):
        return f"<Order #{self.id} - session {self.session_id} - {self.status.value}>"


class OrderItem(Base):
    """
    One ordered line. Its id is the key the payment ledger settles against.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class SessionPaymentRow(Base):
    """
    One split payment. Rows are only ever inserted.
    """
    __tablename__ = "session_payments"
    __table_args__ = (
        UniqueConstraint("session_id", "idempotency_key", name="uq_session_payments_key"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    notes = Column(Text, nullable=True)
    fiscal_flag = Column(Boolean, nullable=False, default=False)
    idempotency_key = Column(String(64), nullable=True)
    paid_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    session = relationship("TableSession", back_populates="payments")
    items = relationship(
        "SessionPaymentItemRow",
        back_populates="payment",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SessionPaymentItemRow.id",
    )

    def __repr__(self):
        return f"<SessionPayment #{self.id} - session {self.session_id} - {self.amount_cents}>"


class SessionPaymentItemRow(Base):
    """
    Quantity of an order line settled by a payment. Cover units are stored
    with is_cover set and no order item.
    """
    __tablename__ = "session_payment_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(Integer, ForeignKey("session_payments.id"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=True)
    is_cover = Column(Boolean, nullable=False, default=False)
    name = Column(String(100), nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    payment = relationship("SessionPaymentRow", back_populates="items")
