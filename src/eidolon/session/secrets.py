"""Per-character secrets sealed with an HMAC-SHA-256 signature."""

import base64
import hashlib
import hmac
import json
import secrets as token_source
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from .. import config
from ..core.exceptions import SecretsVerificationError


def default_secrets() -> dict[str, Optional[str]]:
    """Server-wide fallback credentials."""
    return {
        "openai": config.OPENAI_API_KEY,
        "anthropic": config.ANTHROPIC_API_KEY,
        "discord": None,
        "twitter": None,
        "telegram": None,
    }


@dataclass
class OpenedSecrets:
    values: dict[str, Any] = field(default_factory=dict)
    verified: bool = False


class SecretVault:
    """
    Seals and opens secrets blobs.

    A blob is JSON `{salt, data, signature}` where signature is
    base64(HMAC-SHA256(master_key, salt + data)).

    An unverifiable blob yields the server defaults only; its payload is
    never merged in. With `strict=True` it raises instead.
    """

    def __init__(
        self,
        master_key: str = config.CHARACTER_SALT,
        strict: bool = config.SECRETS_STRICT,
    ):
        self._master_key = master_key.encode("utf-8")
        self.strict = strict

    @staticmethod
    def new_salt() -> str:
        return token_source.token_hex(16)

    def _sign(self, salt: str, data: str) -> str:
        digest = hmac.new(
            self._master_key,
            (salt + data).encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def seal(self, values: dict[str, Any], salt: Optional[str] = None) -> str:
        salt = salt or self.new_salt()
        data = json.dumps(values, sort_keys=True)
        return json.dumps({
            "salt": salt,
            "data": data,
            "signature": self._sign(salt, data),
        })

    def open(self, blob: Optional[str], character_id: str = "") -> OpenedSecrets:
        """
        Verify and decode a sealed blob.

        Raises:
            SecretsVerificationError: strict mode and the blob is unverifiable
        """
        defaults = default_secrets()
        try:
            envelope = json.loads(blob) if blob else {}
        except (TypeError, ValueError):
            envelope = {}

        salt = envelope.get("salt") if isinstance(envelope, dict) else None
        data = envelope.get("data") if isinstance(envelope, dict) else None
        signature = envelope.get("signature") if isinstance(envelope, dict) else None

        if salt and isinstance(data, str) and signature:
            expected = self._sign(salt, data)
            if hmac.compare_digest(expected, signature):
                try:
                    values = json.loads(data)
                except ValueError:
                    values = None
                if isinstance(values, dict):
                    return OpenedSecrets(values={**defaults, **values}, verified=True)

        if self.strict:
            raise SecretsVerificationError(character_id)
        logger.warning(
            f"Secrets for character {character_id or '?'} missing or unverified, "
            f"falling back to server defaults"
        )
        return OpenedSecrets(values=defaults, verified=False)
