"""
Argon2id Credential Vault
=========================

One-way hashing and verification of license holder secrets.

Security Properties:
- Fresh random salt per hash, embedded in the encoded string
- Cost parameters travel with each hash, so raising them later only
  affects new hashes until needs_rehash() upgrades old ones
- Unknown accounts pay for one verification too (verify_dummy)
- Malformed stored hashes verify as False, never raise

Defaults are 100 MiB memory, 2 passes, 4 lanes (SecurityConfig).
"""

from __future__ import annotations

import threading
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import (
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)

from phantomauth.security.constants import (
    ARGON2_HASH_LENGTH,
    ARGON2_MEMORY_COST,
    ARGON2_MIN_MEMORY_COST,
    ARGON2_MIN_TIME_COST,
    ARGON2_PARALLELISM,
    ARGON2_SALT_LENGTH,
    ARGON2_TIME_COST,
)


# Verified against on unknown usernames so both paths cost the same
_DUMMY_SECRET = "phantomauth-timing-equalizer"


class Argon2Hasher:
    """
    Credential Vault backed by argon2-cffi.

    Usage:
        vault = Argon2Hasher(memory_cost=config.security.argon2_memory_cost)
        encoded = vault.hash(password)
        if vault.verify(password, account.password_hash):
            ...

    Security Notes:
        - The encoded string carries salt and parameters; store it verbatim
        - verify() never raises for bad input, so callers cannot tell a
          corrupt record from a wrong secret
    """

    __slots__ = (
        "_memory_cost", "_time_cost", "_parallelism",
        "_hasher", "_dummy_hash", "_dummy_lock",
    )

    def __init__(
        self,
        memory_cost: int = ARGON2_MEMORY_COST,
        time_cost: int = ARGON2_TIME_COST,
        parallelism: int = ARGON2_PARALLELISM,
        hash_length: int = ARGON2_HASH_LENGTH,
        salt_length: int = ARGON2_SALT_LENGTH,
    ) -> None:
        """
        Args:
            memory_cost: KiB of memory per hash
            time_cost: Passes over memory
            parallelism: Lanes
            hash_length: Digest bytes
            salt_length: Salt bytes

        Raises:
            ValueError: If a parameter is below the accepted floor
        """
        if memory_cost < ARGON2_MIN_MEMORY_COST:
            raise ValueError(f"memory_cost must be at least {ARGON2_MIN_MEMORY_COST} KiB")
        if time_cost < ARGON2_MIN_TIME_COST:
            raise ValueError(f"time_cost must be at least {ARGON2_MIN_TIME_COST}")
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if hash_length < 16:
            raise ValueError("hash_length must be at least 16 bytes")
        if salt_length < 8:
            raise ValueError("salt_length must be at least 8 bytes")

        self._memory_cost = memory_cost
        self._time_cost = time_cost
        self._parallelism = parallelism
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_length,
            salt_len=salt_length,
            type=Type.ID,
        )
        self._dummy_hash: Optional[str] = None
        self._dummy_lock = threading.Lock()

    @property
    def parameters(self) -> dict[str, int]:
        """Cost parameters new hashes are created with."""
        return {
            "memory_cost": self._memory_cost,
            "time_cost": self._time_cost,
            "parallelism": self._parallelism,
        }

    def hash(self, secret: str) -> str:
        """
        Hash a secret using Argon2id.

        Returns:
            Encoded ``$argon2id$...`` string for storage

        Raises:
            ValueError: If the secret is empty
        """
        if not secret:
            raise ValueError("Secret cannot be empty")
        return self._hasher.hash(secret)

    def verify(self, secret: str, encoded: Optional[str]) -> bool:
        """
        Verify a secret against an encoded hash.

        Returns:
            True if the secret matches, False otherwise (including
            malformed or empty stored hashes)
        """
        if not secret or not encoded:
            return False

        try:
            return self._hasher.verify(encoded, secret)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def verify_dummy(self, secret: str) -> bool:
        """
        Spend one verification worth of CPU on a throwaway hash.

        Called when the account does not exist; always returns False.
        """
        with self._dummy_lock:
            if self._dummy_hash is None:
                self._dummy_hash = self._hasher.hash(_DUMMY_SECRET)
            dummy = self._dummy_hash
        self.verify(secret or "-", dummy)
        return False

    def needs_rehash(self, encoded: str) -> bool:
        """Return True if the hash was made with weaker/older parameters."""
        try:
            return self._hasher.check_needs_rehash(encoded)
        except (InvalidHashError, ValueError):
            return True

