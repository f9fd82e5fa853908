"""Session lifecycle: nonces, the active-session cache and character secrets."""

from .nonce import NonceManager
from .registry import ActiveSession, SessionRegistry
from .secrets import SecretVault

__all__ = ["ActiveSession", "NonceManager", "SecretVault", "SessionRegistry"]
