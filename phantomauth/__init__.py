"""
PhantomAuth - A Multi-Tenant License Authority
==============================================

This package authenticates application-scoped license holders with
hardware binding, deny-lists and revocable sessions.

Security Notice:
- No secrets are logged
- Fail-closed design pattern
- Passwords and session tokens are stored only as one-way hashes
"""

from phantomauth.core.config import AuthorityConfig
from phantomauth.core.logging import get_secure_logger
from phantomauth.core.auth.authenticator import (
    AuthenticationAuthority,
    AuthErrorKind,
    AuthResult,
)

__version__ = "0.1.0"
__author__ = "PhantomAuth Team"

__all__ = [
    "AuthorityConfig",
    "get_secure_logger",
    "AuthenticationAuthority",
    "AuthErrorKind",
    "AuthResult",
    "__version__",
]
