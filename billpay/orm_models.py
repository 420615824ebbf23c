from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    true as sa_true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billpay.db import Base

# Values of BillPayRule.binding_state
BINDING_BOUND = "bound"
BINDING_UNBOUND = "unbound"
BINDING_PENDING = "pending"


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Identity-provider subject (Supabase user uuid)
    auth_user_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    internal_accounts: Mapped[list["InternalAccount"]] = relationship(
        "InternalAccount", back_populates="user"
    )


class InternalAccount(Base):
    __tablename__ = "internal_accounts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    account_number: Mapped[str] = mapped_column(String(17), unique=True, nullable=False)
    routing_number: Mapped[str] = mapped_column(
        String(9), nullable=False, default="724722907"
    )
    account_type: Mapped[str] = mapped_column(String(32), nullable=False, default="checking")
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa_true()
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="internal_accounts")


class BillPayPayee(Base):
    __tablename__ = "billpay_payees"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str] = mapped_column(Text, nullable=False)
    street_address: Mapped[str] = mapped_column(Text, nullable=False)
    address_line_2: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[str] = mapped_column(Text, nullable=False)
    state_or_territory: Mapped[str] = mapped_column(String(2), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(10), nullable=False)
    country: Mapped[str] = mapped_column(
        Text, nullable=False, default="United States"
    )
    account_number: Mapped[str] = mapped_column(String(17), nullable=False)
    routing_number: Mapped[str] = mapped_column(String(9), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa_true()
    )
    __table_args__ = (
        UniqueConstraint(
            "routing_number", "account_number", name="uq_billpay_payee_routing_account"
        ),
    )


class BillPayRule(Base):
    __tablename__ = "billpay_rules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    source_internal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("internal_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payee_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("billpay_payees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # Dollars; the API takes cents and divides by 100 at the boundary
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    frequency: Mapped[str] = mapped_column(Text, nullable=False)  # 5-field cron
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # naive UTC
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    binding_state: Mapped[str] = mapped_column(
        String(16), nullable=False, default=BINDING_PENDING, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    payee: Mapped["BillPayPayee"] = relationship("BillPayPayee")
    source_internal: Mapped["InternalAccount"] = relationship("InternalAccount")
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_billpay_rules_amount_positive"),
        CheckConstraint(
            "end_time IS NULL OR end_time > start_time", name="ck_billpay_rules_window"
        ),
    )


class Transaction(Base):
    """Ledger row written by the ``process_billpay_rule`` procedure on each cron run."""

    __tablename__ = "transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    internal_account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("internal_accounts.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # approved | denied
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    # Kept when the rule is deleted so payment history survives
    bill_pay_rule_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("billpay_rules.id", ondelete="SET NULL"), nullable=True, index=True
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    external_routing_number: Mapped[Optional[str]] = mapped_column(String(9), nullable=True)
    external_account_number: Mapped[Optional[str]] = mapped_column(String(17), nullable=True)
    external_nickname: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
