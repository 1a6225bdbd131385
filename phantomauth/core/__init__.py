"""
Core module - Contains configuration, logging, and the authority components.
"""

from phantomauth.core.config import AuthorityConfig
from phantomauth.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["AuthorityConfig", "get_secure_logger", "SecureLogFilter"]
