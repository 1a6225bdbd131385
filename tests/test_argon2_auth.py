from __future__ import annotations

import pytest

from phantomauth.core.auth.argon2_auth import Argon2Hasher


def test_verify_accepts_the_hashed_secret(hasher):
    encoded = hasher.hash("secret123")
    assert encoded.startswith("$argon2id$")
    assert hasher.verify("secret123", encoded) is True


def test_verify_rejects_a_wrong_secret(hasher):
    encoded = hasher.hash("secret123")
    assert hasher.verify("secret124", encoded) is False


def test_same_secret_hashes_differently(hasher):
    assert hasher.hash("secret123") != hasher.hash("secret123")


@pytest.mark.parametrize("stored", ["", None, "not-a-hash", "$argon2id$v=19$garbage"])
def test_malformed_stored_hash_is_a_failure_not_an_exception(hasher, stored):
    assert hasher.verify("secret123", stored) is False


def test_empty_secret_cannot_be_hashed(hasher):
    with pytest.raises(ValueError):
        hasher.hash("")


def test_verify_dummy_always_fails(hasher):
    assert hasher.verify_dummy("phantomauth-timing-equalizer") is False
    assert hasher.verify_dummy("") is False


def test_needs_rehash_when_parameters_grow(hasher):
    encoded = hasher.hash("secret123")
    stronger = Argon2Hasher(memory_cost=16384, time_cost=2, parallelism=1)
    assert hasher.needs_rehash(encoded) is False
    assert stronger.needs_rehash(encoded) is True
    # Old hashes still verify under the new parameters
    assert stronger.verify("secret123", encoded) is True


def test_rejects_parameters_below_minimum():
    with pytest.raises(ValueError):
        Argon2Hasher(memory_cost=1024, time_cost=1, parallelism=1)
    with pytest.raises(ValueError):
        Argon2Hasher(memory_cost=8192, time_cost=1, parallelism=0)
