"""Tests for key derivation and AES-GCM encryption."""

import pytest

from common.exceptions import AuthenticationError
from common.types import EncryptedBlock
from store.codec import EncryptionCodec, derive_key

ITERATIONS = 1000


class TestDeriveKey:
    """Test PBKDF2 key derivation."""

    def test_key_is_32_bytes(self):
        key = derive_key("fixed-secret-passphrase", "static_salt_value", ITERATIONS)
        assert len(key) == 32

    def test_key_is_deterministic(self):
        first = derive_key("pass", "salt", ITERATIONS)
        second = derive_key("pass", "salt", ITERATIONS)
        assert first == second

    def test_different_salt_gives_different_key(self):
        assert derive_key("pass", "salt-a", ITERATIONS) != derive_key("pass", "salt-b", ITERATIONS)

    def test_rejects_zero_iterations(self):
        with pytest.raises(ValueError):
            derive_key("pass", "salt", 0)

    def test_codec_memoizes_key(self):
        codec = EncryptionCodec(iterations=ITERATIONS)
        assert not codec.key_derived

        key = codec.derive_key()

        assert codec.key_derived
        assert codec.derive_key() is key


class TestEncryptDecrypt:
    """Test authenticated encryption round trips."""

    def test_round_trip_bytes(self, codec):
        block = codec.encrypt(b"hello world")
        assert codec.decrypt(block) == b"hello world"

    def test_nonce_is_fresh_per_encryption(self, codec):
        first = codec.encrypt(b"same")
        second = codec.encrypt(b"same")

        assert len(first.nonce) == 12
        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    def test_ciphertext_carries_tag(self, codec):
        block = codec.encrypt(b"abc")
        assert len(block.ciphertext) == 3 + 16

    def test_wrong_key_fails_authentication(self, codec):
        block = codec.encrypt(b"secret data")
        other = EncryptionCodec(passphrase="another-passphrase", iterations=ITERATIONS)

        with pytest.raises(AuthenticationError):
            other.decrypt(block)

    def test_tampered_ciphertext_fails_authentication(self, codec):
        block = codec.encrypt(b"secret data")
        tampered = EncryptedBlock(
            ciphertext=bytes([block.ciphertext[0] ^ 0x01]) + block.ciphertext[1:],
            nonce=block.nonce
        )

        with pytest.raises(AuthenticationError):
            codec.decrypt(tampered)

    def test_records_round_trip_preserves_unicode_and_duplicates(self, codec):
        records = ["100", "100", "Zoë", "名前", "a,b", {"id": 7, "name": "x"}, 42]
        block = codec.encrypt_records(records)
        assert codec.decrypt_records(block) == records

    def test_decrypt_records_rejects_non_list(self, codec):
        block = codec.encrypt(b'{"not": "a list"}')
        with pytest.raises(AuthenticationError):
            codec.decrypt_records(block)

    def test_stored_text_form(self, codec):
        block = codec.encrypt(b"payload")
        stored = block.to_dict()

        assert set(stored) == {"encryptedData", "iv"}
        assert EncryptedBlock.from_dict(stored) == block

    @pytest.mark.asyncio
    async def test_async_round_trip(self, codec):
        await codec.warm_up()
        block = await codec.encrypt_records_async(["1", "2"])
        assert await codec.decrypt_records_async(block) == ["1", "2"]
