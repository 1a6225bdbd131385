"""
Security module - Constants, deny-list and tamper-aware activity log.

Submodules:
- constants.py: hashing, token and paging parameters
- blacklist.py: deny-list evaluation
- activity.py: hash-chained activity log
"""

from phantomauth.security.constants import (
    API_KEY_PREFIX,
    MAX_PASSWORD_LENGTH,
    SESSION_TOKEN_BYTES,
)

__all__ = [
    "API_KEY_PREFIX",
    "MAX_PASSWORD_LENGTH",
    "SESSION_TOKEN_BYTES",
]
