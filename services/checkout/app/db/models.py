from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CheckoutAttempt(Base):
    __tablename__ = "checkout_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    state: Mapped[str] = mapped_column(String, nullable=False)

    cart_snapshot_json: Mapped[list] = mapped_column(JSON, nullable=False)
    shipping_address_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    customer_email: Mapped[str] = mapped_column(String, nullable=False)
    discount_codes_json: Mapped[list] = mapped_column(JSON, nullable=False)
    customer_notes: Mapped[str | None] = mapped_column(String, nullable=True)

    quote_id: Mapped[str | None] = mapped_column(String, nullable=True)
    quote_state: Mapped[str | None] = mapped_column(String, nullable=True)
    quote_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    quote_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    order_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    order_currency: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String, nullable=True)

    last_error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class EventLog(Base):
    __tablename__ = "event_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    attempt_id: Mapped[str] = mapped_column(ForeignKey("checkout_attempts.id"), nullable=False)

    event_type: Mapped[str] = mapped_column(String, nullable=False)
    event_payload_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
