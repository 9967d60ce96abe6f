"""Persistence for profiles and custodial wallets."""

from vaultswap.storage.database import close_db, get_db, init_db
from vaultswap.storage.models import Base, Profile, Wallet
from vaultswap.storage.repository import ProfileRepository, WalletRepository

__all__ = [
    # Models
    "Base",
    "Profile",
    "Wallet",
    # Repositories
    "ProfileRepository",
    "WalletRepository",
    # Database
    "get_db",
    "init_db",
    "close_db",
]
