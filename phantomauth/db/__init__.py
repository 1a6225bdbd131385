"""
Database module - SQLite persistence shared by the authority components.

Security Considerations:
- Secrets are stored only as one-way hashes
- Session tokens are stored only as SHA-256 digests
- Every tenant-owned row carries an applications(id) foreign key
"""

from phantomauth.db.connection import Database, StoreError, row_to_dict
from phantomauth.db.schema import TENANT_SCHEMA

__all__ = ["Database", "StoreError", "row_to_dict", "TENANT_SCHEMA"]
