"""SQLAlchemy models for profiles and custodial wallets."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from vaultswap.config import ChainFamily


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Profile(Base):
    """User profile linked to an external identity."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    wallet_address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "display_name": self.display_name,
            "wallet_address": self.wallet_address,
        }


class Wallet(Base):
    """Custodial wallet.

    ``private_key_material`` is hex (EVM) or base58 (Solana), optionally
    sealed with the master key (``enc:`` prefix). It must never be logged
    or returned from an API.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    private_key_material: Mapped[str] = mapped_column(Text, nullable=False)
    chain_family: Mapped[str] = mapped_column(
        String(20), default=ChainFamily.EVM.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @property
    def family(self) -> ChainFamily:
        return ChainFamily(self.chain_family)

    def __repr__(self) -> str:
        return f"Wallet(id={self.id}, address={self.address}, chain={self.chain_family})"
