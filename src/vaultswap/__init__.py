"""Vaultswap - custodial wallet and swap orchestration backend."""

__version__ = "0.1.0"
