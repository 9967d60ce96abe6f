"""Custodial key material."""

from vaultswap.wallets.keys import KeyMaterialService, SigningKeyHandle

__all__ = ["KeyMaterialService", "SigningKeyHandle"]
