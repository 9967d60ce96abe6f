"""Tests for at-rest sealing of key material."""

import pytest

from vaultswap.crypto import SEALED_PREFIX, SecretBox, generate_master_key
from vaultswap.errors import InvalidKeyEncoding


class TestSecretBox:
    """Tests for SecretBox."""

    def test_disabled_box_passes_through(self):
        box = SecretBox()

        assert not box.enabled
        assert box.seal("abc") == "abc"
        assert box.unseal("abc") == "abc"

    def test_seal_unseal(self):
        box = SecretBox(generate_master_key())

        sealed = box.seal("secret-material")
        assert sealed.startswith(SEALED_PREFIX)
        assert "secret-material" not in sealed
        assert box.unseal(sealed) == "secret-material"

    def test_plain_values_still_readable_with_key(self):
        box = SecretBox(generate_master_key())
        assert box.unseal("legacy-plain") == "legacy-plain"

    def test_wrong_key(self):
        sealed = SecretBox(generate_master_key()).seal("secret")

        with pytest.raises(InvalidKeyEncoding):
            SecretBox(generate_master_key()).unseal(sealed)

    def test_sealed_without_key(self):
        sealed = SecretBox(generate_master_key()).seal("secret")

        with pytest.raises(InvalidKeyEncoding):
            SecretBox().unseal(sealed)
