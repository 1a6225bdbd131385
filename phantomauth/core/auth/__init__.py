"""
PhantomAuth Authentication Module
=================================

Provides license holder authentication with:
- Argon2id password hashing
- Derived account lifecycle (active, paused, expired, deleted)
- Session registry with heartbeat and termination
- Login orchestration across deny-list, lifecycle, vault and HWID

Security Properties:
- Memory-hard password hashing
- Constant-time verification
- Secure session tokens, stored hashed
- One audit entry for every login attempt
"""

from phantomauth.core.auth.argon2_auth import Argon2Hasher
from phantomauth.core.auth.account_lifecycle import (
    AccountState,
    AccountUpdate,
    AppUser,
    UNSET,
    evaluate_eligibility,
)
from phantomauth.core.auth.session_control import (
    Session,
    SessionError,
    SessionRegistry,
)
from phantomauth.core.auth.user_manager import (
    AppUserExistsError,
    AppUserManager,
    AppUserNotFoundError,
)
from phantomauth.core.auth.authenticator import (
    AuthenticationAuthority,
    AuthErrorKind,
    AuthResult,
)

__all__ = [
    "Argon2Hasher",
    "AccountState",
    "AccountUpdate",
    "AppUser",
    "UNSET",
    "evaluate_eligibility",
    "Session",
    "SessionError",
    "SessionRegistry",
    "AppUserExistsError",
    "AppUserManager",
    "AppUserNotFoundError",
    "AuthenticationAuthority",
    "AuthErrorKind",
    "AuthResult",
]
