"""
Security Constants
==================

Defines security-related constants used throughout the authority.
These values should not be modified without careful security review.
"""

from typing import Final

# Credential hashing (Argon2id, OWASP 2023 recommendations)
ARGON2_MEMORY_COST: Final[int] = 102400  # 100 MB in KiB
ARGON2_TIME_COST: Final[int] = 2
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LENGTH: Final[int] = 32
ARGON2_SALT_LENGTH: Final[int] = 16

# Lowest parameters the hasher accepts (test deployments)
ARGON2_MIN_MEMORY_COST: Final[int] = 8192  # 8 MB in KiB
ARGON2_MIN_TIME_COST: Final[int] = 1

# Application API keys
API_KEY_PREFIX: Final[str] = "phantom_"
API_KEY_LENGTH: Final[int] = 32

# Session tokens
SESSION_TOKEN_BYTES: Final[int] = 32  # 256 bits of entropy
MIN_SESSION_TOKEN_BYTES: Final[int] = 16

# Account identifiers
MIN_USERNAME_LENGTH: Final[int] = 1
MAX_USERNAME_LENGTH: Final[int] = 64
MAX_PASSWORD_LENGTH: Final[int] = 256
MAX_HWID_LENGTH: Final[int] = 256

# Activity log paging
DEFAULT_ACTIVITY_PAGE_SIZE: Final[int] = 100
MAX_ACTIVITY_PAGE_SIZE: Final[int] = 1000

# Hash chain anchor for each application's activity log
ACTIVITY_CHAIN_GENESIS: Final[str] = "genesis"

# Webhook delivery
WEBHOOK_SIGNATURE_HEADER: Final[str] = "X-Phantom-Signature"
WEBHOOK_EVENT_HEADER: Final[str] = "X-Phantom-Event"
WEBHOOK_TIMEOUT_SECONDS: Final[int] = 10
WEBHOOK_MAX_WORKERS: Final[int] = 4
