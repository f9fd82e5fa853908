"""Character records."""

from ..schemas import CharacterConfig, ExampleMessage, StyleConfig, Wallet
from .repository import CharacterRepository, slugify

__all__ = [
    "CharacterConfig",
    "CharacterRepository",
    "ExampleMessage",
    "StyleConfig",
    "Wallet",
    "slugify",
]
