"""Tests for FieldEncryptor: Fernet encryption of alert fields."""

from __future__ import annotations

import pytest

from carewatch.core.storage.encryption import EncryptionError, FieldEncryptor


class TestFieldEncryptor:
    def test_round_trip_string(self, field_encryptor):
        token = field_encryptor.encrypt("heart rate is above normal range")
        assert token != "heart rate is above normal range"
        assert field_encryptor.decrypt(token) == "heart rate is above normal range"

    def test_round_trip_dict(self, field_encryptor):
        token = field_encryptor.encrypt({"medication_id": "med-42"})
        assert field_encryptor.decrypt(token) == {"medication_id": "med-42"}

    def test_none_and_empty(self, field_encryptor):
        assert field_encryptor.encrypt(None) == ""
        assert field_encryptor.decrypt("") is None

    def test_plaintext_not_in_token(self, field_encryptor):
        token = field_encryptor.encrypt({"metric": "oxygen_saturation"})
        assert "oxygen_saturation" not in token

    def test_wrong_key_fails(self, field_encryptor):
        token = field_encryptor.encrypt("secret")
        other = FieldEncryptor(FieldEncryptor.generate_key())
        with pytest.raises(EncryptionError, match="Decryption failed"):
            other.decrypt(token)

    def test_corrupt_token_fails(self, field_encryptor):
        with pytest.raises(EncryptionError):
            field_encryptor.decrypt("not-a-token")

    def test_non_serializable_fails(self, field_encryptor):
        with pytest.raises(EncryptionError, match="Encryption failed"):
            field_encryptor.encrypt(object())

    @pytest.mark.parametrize("key", ["", "   ", "short-key"])
    def test_invalid_keys(self, key):
        with pytest.raises(EncryptionError):
            FieldEncryptor(key)

    def test_previous_key_still_decrypts(self):
        old_key = FieldEncryptor.generate_key()
        token = FieldEncryptor(old_key).encrypt({"metric": "weight"})
        current = FieldEncryptor(FieldEncryptor.generate_key(), previous_keys=[old_key])
        assert current.decrypt(token) == {"metric": "weight"}

    def test_rotate_reseals_under_current_key(self):
        old_key = FieldEncryptor.generate_key()
        new_key = FieldEncryptor.generate_key()
        token = FieldEncryptor(old_key).encrypt("message")

        rotated = FieldEncryptor(new_key, previous_keys=[old_key]).rotate(token)
        assert FieldEncryptor(new_key).decrypt(rotated) == "message"
        with pytest.raises(EncryptionError):
            FieldEncryptor(old_key).decrypt(rotated)

    def test_rotate_empty_token(self, field_encryptor):
        assert field_encryptor.rotate("") == ""

    def test_generate_key_is_usable(self):
        encryptor = FieldEncryptor(FieldEncryptor.generate_key())
        assert encryptor.decrypt(encryptor.encrypt([1, 2])) == [1, 2]
