from typing import List, Optional
from datetime import datetime
import enum
import uuid

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    ForeignKey,
    Enum,
    Index,
    JSON,
    CheckConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from delayguard.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


# Enums
class Carrier(enum.Enum):
    UPS = "UPS"
    FEDEX = "FEDEX"
    USPS = "USPS"
    UNKNOWN = "UNKNOWN"


class DeliverySource(enum.Enum):
    CARRIER = "CARRIER"
    MERCHANT_OVERRIDE = "MERCHANT_OVERRIDE"
    DEFAULT = "DEFAULT"


class BillingStatus(enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


def _new_id() -> str:
    return str(uuid.uuid4())


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now
    )


# Models
class Merchant(Base, AuditMixin):
    __tablename__ = "merchants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    shop_domain: Mapped[str] = mapped_column(String(255), unique=True)
    billing_status: Mapped[BillingStatus] = mapped_column(
        Enum(BillingStatus), default=BillingStatus.PENDING, nullable=False
    )
    shop_frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Minutes added to every poll time so merchants do not all poll at once
    random_poll_offset: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delay_threshold_hours: Mapped[int] = mapped_column(
        Integer, default=8, nullable=False
    )
    # Normalized service level key -> business days
    delivery_windows: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timezone: Mapped[str] = mapped_column(
        String(64), default="America/New_York", nullable=False
    )

    # Relationships
    shipments: Mapped[List["Shipment"]] = relationship(back_populates="merchant")

    __table_args__ = (
        CheckConstraint(
            "random_poll_offset >= 0 AND random_poll_offset < 240",
            name="ck_merchant_random_poll_offset",
        ),
        CheckConstraint(
            "delay_threshold_hours >= 0", name="ck_merchant_delay_threshold_hours"
        ),
    )


class Shipment(Base, AuditMixin):
    __tablename__ = "shipments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    merchant_id: Mapped[str] = mapped_column(
        ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False
    )
    order_number: Mapped[str] = mapped_column(String(100), nullable=False)
    tracking_number: Mapped[str] = mapped_column(String(100), nullable=False)
    carrier: Mapped[Carrier] = mapped_column(
        Enum(Carrier), default=Carrier.UNKNOWN, nullable=False
    )
    service_level: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # All datetimes are naive UTC
    ship_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expected_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    expected_delivery_source: Mapped[DeliverySource] = mapped_column(
        Enum(DeliverySource), default=DeliverySource.DEFAULT, nullable=False
    )
    rescheduled_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    is_delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_delayed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    days_delayed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delay_flagged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    next_poll_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_polled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    # Relationships
    merchant: Mapped["Merchant"] = relationship(back_populates="shipments")

    __table_args__ = (
        Index("ix_shipments_due_for_poll", "next_poll_at", "is_delivered", "is_archived"),
        Index("ix_shipments_merchant_id", "merchant_id"),
        CheckConstraint("days_delayed >= 0", name="ck_shipment_days_delayed"),
    )
