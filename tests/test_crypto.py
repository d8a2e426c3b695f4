"""Tests for key derivation and authenticated encryption."""

import pytest

from peridot_vault.crypto import (
    DEFAULT_KDF,
    IV_SIZE,
    PBKDF2_SHA256,
    TAG_SIZE,
    AuthenticationError,
    KdfParams,
    SealedSecret,
    derive_key,
    generate_salt,
    open_sealed,
    reseal,
    seal,
)

FAST_KDF = KdfParams(n=1024, r=8, p=1, length=32)

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def flip_bit(data: bytes, index: int = 0) -> bytes:
    """Flip the lowest bit of one byte."""
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1:]


class TestKeyDerivation:
    """Tests for derive_key."""

    def test_derive_is_deterministic(self):
        """Same secret and salt yield the same key."""
        salt = generate_salt()

        assert derive_key("passphrase", salt, FAST_KDF) == derive_key("passphrase", salt, FAST_KDF)

    def test_distinct_salts_give_distinct_keys(self):
        key1 = derive_key("passphrase", generate_salt(), FAST_KDF)
        key2 = derive_key("passphrase", generate_salt(), FAST_KDF)

        assert key1 != key2

    def test_distinct_secrets_give_distinct_keys(self):
        salt = generate_salt()

        assert derive_key("one", salt, FAST_KDF) != derive_key("two", salt, FAST_KDF)

    def test_output_length_follows_params(self):
        salt = generate_salt()

        assert len(derive_key("secret", salt, FAST_KDF)) == 32
        assert len(derive_key("secret", salt, KdfParams(n=1024, length=64))) == 64

    def test_default_params_are_published_scrypt_costs(self):
        assert DEFAULT_KDF.algorithm == "scrypt"
        assert (DEFAULT_KDF.n, DEFAULT_KDF.r, DEFAULT_KDF.p, DEFAULT_KDF.length) == (16384, 8, 1, 32)

    def test_cost_parameters_change_the_key(self):
        salt = generate_salt()

        assert derive_key("secret", salt, FAST_KDF) != derive_key("secret", salt, KdfParams(n=2048))

    def test_pbkdf2_params(self):
        """Records carrying a PBKDF2 snapshot derive with PBKDF2."""
        params = KdfParams(algorithm=PBKDF2_SHA256, iterations=1000)
        salt = generate_salt()

        key = derive_key("secret", salt, params)

        assert len(key) == 32
        assert key == derive_key("secret", salt, params)
        assert key != derive_key("secret", salt, FAST_KDF)

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ValueError, match="Unsupported KDF"):
            derive_key("secret", generate_salt(), KdfParams(algorithm="md5"))

    def test_params_as_dict(self):
        assert DEFAULT_KDF.as_dict() == {
            "algorithm": "scrypt",
            "N": 16384,
            "r": 8,
            "p": 1,
            "keylen": 32,
        }
        assert KdfParams(algorithm=PBKDF2_SHA256).as_dict()["iterations"] == 100000


class TestSealing:
    """Tests for seal/open_sealed."""

    @pytest.fixture
    def key(self) -> bytes:
        return derive_key("secret", generate_salt(), FAST_KDF)

    @pytest.fixture
    def salt(self) -> bytes:
        return generate_salt()

    def test_round_trip(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)

        assert open_sealed(sealed, key, salt) == PRIVATE_KEY

    def test_round_trip_unicode(self, key, salt):
        phrase = "légal ünïcode 秘密"

        assert open_sealed(seal(phrase, key, salt), key, salt) == phrase

    def test_sealed_layout(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)

        assert len(sealed.iv) == IV_SIZE
        assert len(sealed.tag) == TAG_SIZE
        assert PRIVATE_KEY.encode() not in sealed.ciphertext

    def test_fresh_iv_per_call(self, key, salt):
        """Sealing the same plaintext twice never reuses the IV."""
        first = seal(PRIVATE_KEY, key, salt)
        second = seal(PRIVATE_KEY, key, salt)

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_tampered_ciphertext_fails(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)

        for index in (0, len(sealed.ciphertext) // 2, len(sealed.ciphertext) - 1):
            tampered = SealedSecret(
                ciphertext=flip_bit(sealed.ciphertext, index),
                iv=sealed.iv,
                tag=sealed.tag,
            )
            with pytest.raises(AuthenticationError):
                open_sealed(tampered, key, salt)

    def test_tampered_tag_fails(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)
        tampered = SealedSecret(ciphertext=sealed.ciphertext, iv=sealed.iv, tag=flip_bit(sealed.tag, 5))

        with pytest.raises(AuthenticationError):
            open_sealed(tampered, key, salt)

    def test_tampered_iv_fails(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)
        tampered = SealedSecret(ciphertext=sealed.ciphertext, iv=flip_bit(sealed.iv), tag=sealed.tag)

        with pytest.raises(AuthenticationError):
            open_sealed(tampered, key, salt)

    def test_tampered_salt_fails(self, key, salt):
        """Associated data binds the blob to its record salt."""
        sealed = seal(PRIVATE_KEY, key, salt)

        with pytest.raises(AuthenticationError):
            open_sealed(sealed, key, flip_bit(salt, 3))

    def test_other_record_salt_fails(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)

        with pytest.raises(AuthenticationError):
            open_sealed(sealed, key, generate_salt())

    def test_wrong_key_fails(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)
        other_key = derive_key("other", salt, FAST_KDF)

        with pytest.raises(AuthenticationError):
            open_sealed(sealed, other_key, salt)

    def test_hex_encoding(self, key, salt):
        """Hex packing is iv || tag || ciphertext."""
        sealed = seal(PRIVATE_KEY, key, salt)
        packed = sealed.to_hex()

        assert packed.startswith(sealed.iv.hex() + sealed.tag.hex())
        assert SealedSecret.from_hex(packed) == sealed

    def test_truncated_hex_rejected(self):
        with pytest.raises(ValueError, match="truncated"):
            SealedSecret.from_hex("00" * (IV_SIZE + TAG_SIZE - 1))

    def test_reseal_moves_to_new_key(self, key, salt):
        new_salt = generate_salt()
        new_key = derive_key("new secret", new_salt, FAST_KDF)
        sealed = seal(PRIVATE_KEY, key, salt)

        moved = reseal(sealed, key, new_key, salt, new_salt)

        assert open_sealed(moved, new_key, new_salt) == PRIVATE_KEY
        with pytest.raises(AuthenticationError):
            open_sealed(moved, key, salt)

    def test_reseal_with_wrong_old_key_fails(self, key, salt):
        sealed = seal(PRIVATE_KEY, key, salt)

        with pytest.raises(AuthenticationError):
            reseal(sealed, derive_key("wrong", salt, FAST_KDF), key, salt)
