"""
PhantomAuth Device Binding Module
=================================

Binds license holders to one hardware fingerprint.

Security Features:
- Bind on first use, atomically
- Hard failure on device mismatch
- Reset and override are administrative only
"""

from phantomauth.core.device.hwid_binding import (
    BindingOutcome,
    HardwareBindingManager,
    hwid_matches,
)

__all__ = [
    "BindingOutcome",
    "HardwareBindingManager",
    "hwid_matches",
]
