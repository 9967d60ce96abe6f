"""Custodial key material generation and decoding.

EVM wallets:    secp256k1 key, stored as 32-byte hex, address 0x... (checksum)
Solana wallets: ed25519 keypair, stored as base58 of the 64-byte keypair,
                address is the base58 public key

Decoded keys are handed out as SigningKeyHandle objects that are meant to live
for a single signing operation and wipe their buffer on release.
"""

import logging
import secrets
from typing import Optional

import base58
from eth_account import Account
from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair

from vaultswap.config import ChainFamily
from vaultswap.crypto import SecretBox
from vaultswap.errors import EntropyFailure, InvalidKeyEncoding

logger = logging.getLogger(__name__)

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class SigningKeyHandle:
    """Scope-bound holder of a decoded private key.

    Usage:
        with keys.decode(ChainFamily.EVM, wallet.private_key_material) as key:
            account = key.evm_account()
            ...

    The raw bytes are kept in a bytearray that is zeroed on release. Objects
    derived from it (eth_account / solders) are plain Python objects, so
    callers must not keep them past the signing call either.
    """

    def __init__(self, family: ChainFamily, secret: bytes):
        self.family = family
        self._secret: Optional[bytearray] = bytearray(secret)

    def __enter__(self) -> "SigningKeyHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False

    def __repr__(self) -> str:
        state = "released" if self.released else "active"
        return f"SigningKeyHandle(family={self.family.value}, secret=***, {state})"

    __str__ = __repr__

    @property
    def released(self) -> bool:
        return self._secret is None

    def release(self) -> None:
        """Overwrite and drop the key buffer."""
        if self._secret is not None:
            for i in range(len(self._secret)):
                self._secret[i] = 0
            self._secret = None

    def _raw(self) -> bytes:
        if self._secret is None:
            raise RuntimeError("Signing key used after release")
        return bytes(self._secret)

    def evm_account(self) -> LocalAccount:
        if self.family != ChainFamily.EVM:
            raise TypeError(f"Not an EVM key: {self.family.value}")
        return Account.from_key(self._raw())

    def solana_keypair(self) -> Keypair:
        if self.family != ChainFamily.SOLANA:
            raise TypeError(f"Not a Solana key: {self.family.value}")
        raw = self._raw()
        if len(raw) == 32:
            return Keypair.from_seed(raw)
        return Keypair.from_bytes(raw)

    @property
    def address(self) -> str:
        """Chain-native address of the key."""
        if self.family == ChainFamily.EVM:
            return self.evm_account().address
        return str(self.solana_keypair().pubkey())


class KeyMaterialService:
    """Generates new custodial keys and decodes stored ones.

    Persisting the generated pair is the caller's job: the wallet row must be
    written before any profile that points at its address.
    """

    def __init__(self, secret_box: Optional[SecretBox] = None):
        self.secret_box = secret_box or SecretBox()

    def generate(self, family: ChainFamily) -> tuple[str, str]:
        """Create a new keypair.

        Returns:
            (address, private_key_material) where the material is already
            sealed if a master key is configured

        Raises:
            EntropyFailure: the OS random source is unavailable
        """
        try:
            if family == ChainFamily.EVM:
                address, material = self._generate_evm()
            else:
                address, material = self._generate_solana()
        except NotImplementedError:
            logger.critical("No secure random source available for key generation")
            raise EntropyFailure()

        logger.info(f"Generated new {family.value} wallet {address}")
        return address, self.secret_box.seal(material)

    def _generate_evm(self) -> tuple[str, str]:
        while True:
            candidate = secrets.token_bytes(32)
            if 0 < int.from_bytes(candidate, "big") < SECP256K1_ORDER:
                break
        account = Account.from_key(candidate)
        return account.address, candidate.hex()

    def _generate_solana(self) -> tuple[str, str]:
        keypair = Keypair.from_seed(secrets.token_bytes(32))
        return str(keypair.pubkey()), base58.b58encode(bytes(keypair)).decode()

    def decode(
        self,
        family: ChainFamily,
        material: str,
        expected_address: Optional[str] = None,
    ) -> SigningKeyHandle:
        """Decode stored key material into a signing handle.

        Args:
            family: Chain family the wallet belongs to
            material: Stored representation (possibly sealed)
            expected_address: If given, the derived address must match it

        Raises:
            InvalidKeyEncoding: corrupt, truncated or mismatched material
        """
        plain = self.secret_box.unseal(material or "")

        try:
            if family == ChainFamily.EVM:
                handle = self._decode_evm(plain)
            else:
                handle = self._decode_solana(plain)
        except (ValueError, TypeError):
            raise InvalidKeyEncoding()

        if expected_address is not None:
            if not _same_address(family, handle.address, expected_address):
                handle.release()
                logger.error(f"Stored key does not match wallet address {expected_address}")
                raise InvalidKeyEncoding("Stored key does not match wallet address")

        return handle

    @staticmethod
    def address_of(handle: SigningKeyHandle) -> str:
        return handle.address

    @staticmethod
    def _decode_evm(material: str) -> SigningKeyHandle:
        text = material.strip()
        if text.startswith(("0x", "0X")):
            text = text[2:]
        if len(text) != 64:
            raise ValueError("EVM key must be 32 bytes")
        raw = bytes.fromhex(text)
        if not 0 < int.from_bytes(raw, "big") < SECP256K1_ORDER:
            raise ValueError("EVM key out of range")
        return SigningKeyHandle(ChainFamily.EVM, raw)

    @staticmethod
    def _decode_solana(material: str) -> SigningKeyHandle:
        raw = base58.b58decode(material.strip())
        if len(raw) == 64:
            Keypair.from_bytes(raw)
        elif len(raw) == 32:
            Keypair.from_seed(raw)
        else:
            raise ValueError("Solana key must be a 64-byte keypair or 32-byte seed")
        return SigningKeyHandle(ChainFamily.SOLANA, raw)


def _same_address(family: ChainFamily, a: str, b: str) -> bool:
    # EVM addresses compare case-insensitively (checksum casing only)
    if family == ChainFamily.EVM:
        return a.lower() == b.lower()
    return a == b
