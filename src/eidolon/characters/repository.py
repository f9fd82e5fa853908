"""Durable character records: upsert, lookup, cascade delete and secrets."""

import json
import re
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ValidationError
from ..db.database import Database
from ..db.models import (
    Account,
    Character,
    CharacterAdjective,
    CharacterClient,
    CharacterLore,
    CharacterMessageExample,
    CharacterPost,
    CharacterSecret,
    CharacterSession,
    CharacterStyle,
    CharacterTopic,
    CharacterWallet,
    Goal,
    Memory,
    Participant,
    Room,
    SessionNonce,
    utcnow,
)
from ..schemas import CharacterConfig, ExampleMessage, StyleConfig, Wallet
from ..session.secrets import SecretVault, default_secrets

STYLE_CATEGORIES = ("all", "chat", "post")


def slugify(name: str) -> str:
    """URL-safe slug: "Pixel the Cat!" -> "pixel-the-cat"."""
    slug = name.strip().lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"-+", "-", slug)


def _as_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _clean(values: Optional[list[Any]]) -> list[str]:
    return [v.strip() for v in values or [] if isinstance(v, str) and v.strip()]


def _to_config(row: Character) -> CharacterConfig:
    style = StyleConfig(**{
        category: [s.style_text for s in row.styles if s.category == category]
        for category in STYLE_CATEGORIES
    })

    conversations: dict[int, list[ExampleMessage]] = {}
    for line in row.message_examples:
        try:
            content = json.loads(line.content)
        except ValueError:
            content = {"text": line.content}
        conversations.setdefault(line.conversation_index, []).append(
            ExampleMessage(user=line.user, content=content)
        )

    return CharacterConfig(
        id=str(row.id),
        author=row.author,
        name=row.name,
        slug=row.slug,
        model_provider=row.model_provider,
        bio=row.bio or "",
        lore=[entry.lore_text for entry in row.lore],
        topics=[t.topic for t in row.topics],
        style=style,
        adjectives=[a.adjective for a in row.adjectives],
        message_examples=[conversations[i] for i in sorted(conversations)],
        post_examples=[p.post_text for p in row.posts],
        settings=json.loads(row.settings) if row.settings else {},
        status=row.status,
        clients=[c.client for c in row.clients],
        wallets=[Wallet(chain=w.chain, address=w.address) for w in row.wallets],
    )


class CharacterRepository:
    """
    Character rows and their child collections.

    Upsert is keyed on (author, name); every child collection is replaced
    wholesale in the same transaction. Secrets live in a separate sealed
    row and never appear in the returned config.
    """

    def __init__(self, db: Database, vault: Optional[SecretVault] = None):
        self.db = db
        self.vault = vault or SecretVault()

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def upsert_character(self, author: str, character: CharacterConfig) -> CharacterConfig:
        """
        Create or update the character named `character.name` for `author`.

        Raises:
            ValidationError: missing author or name, or the slug is taken
                by another character of the same author
        """
        if not author or not author.strip():
            raise ValidationError("Author is required", field="author")
        name = character.name.strip()
        if not name:
            raise ValidationError("Character name is required", field="name")
        slug = slugify(name)
        if not slug:
            raise ValidationError(f"Character name '{name}' yields an empty slug", field="name")

        settings = dict(character.settings or {})
        secrets = character.secrets or settings.pop("secrets", None)
        settings.pop("secrets", None)
        bio = "\n".join(character.bio) if isinstance(character.bio, list) else character.bio

        async with self.db.transaction() as s:
            clash = await s.scalar(
                select(Character).where(
                    Character.author == author,
                    Character.slug == slug,
                    Character.name != name,
                )
            )
            if clash is not None:
                raise ValidationError(
                    f"Slug '{slug}' already used by character '{clash.name}'", field="name"
                )

            row = await s.scalar(
                select(Character).where(Character.author == author, Character.name == name)
            )
            created = row is None
            if created:
                row = Character(author=author, name=name, slug=slug)
                s.add(row)

            row.slug = slug
            row.model_provider = character.model_provider or "openai"
            row.bio = bio
            row.settings = json.dumps(settings)
            row.status = character.status or "private"
            row.updated_at = utcnow()

            row.lore = [
                CharacterLore(lore_text=text, order_index=i)
                for i, text in enumerate(_clean(character.lore))
            ]
            row.topics = [CharacterTopic(topic=t) for t in _clean(character.topics)]
            row.adjectives = [CharacterAdjective(adjective=a) for a in _clean(character.adjectives)]
            row.styles = [
                CharacterStyle(category=category, style_text=text)
                for category in STYLE_CATEGORIES
                for text in _clean(getattr(character.style, category))
            ]
            row.message_examples = [
                CharacterMessageExample(
                    conversation_index=c,
                    user=message.user,
                    content=json.dumps(message.content),
                    message_order=m,
                )
                for c, conversation in enumerate(character.message_examples)
                for m, message in enumerate(conversation)
            ]
            row.posts = [CharacterPost(post_text=p) for p in _clean(character.post_examples)]
            row.clients = [CharacterClient(client=c) for c in (character.clients or ["DIRECT"])]
            row.wallets = [CharacterWallet(chain=w.chain, address=w.address) for w in character.wallets]

            if secrets is not None or row.secrets is None:
                salt = self.vault.new_salt()
                blob = self.vault.seal({**default_secrets(), **(secrets or {})}, salt=salt)
                if row.secrets is None:
                    row.secrets = CharacterSecret(salt=salt, model_keys=blob)
                else:
                    row.secrets.salt = salt
                    row.secrets.model_keys = blob

            await s.flush()
            result = _to_config(row)

        logger.info(f"Character {author}/{slug} {'created' if created else 'updated'}")
        return result

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_character(self, author: str, slug: str) -> Optional[CharacterConfig]:
        async with self.db.transaction() as s:
            row = await s.scalar(
                select(Character).where(Character.author == author, Character.slug == slug)
            )
            return _to_config(row) if row is not None else None

    async def get_character_by_id(self, character_id: str) -> Optional[CharacterConfig]:
        key = _as_uuid(character_id)
        if key is None:
            return None
        async with self.db.transaction() as s:
            row = await s.get(Character, key)
            return _to_config(row) if row is not None else None

    async def get_characters_by_author(self, author: str) -> list[CharacterConfig]:
        async with self.db.transaction() as s:
            rows = await s.scalars(
                select(Character).where(Character.author == author).order_by(Character.created_at)
            )
            return [_to_config(r) for r in rows.all()]

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_character(self, author: str, slug: str) -> Optional[str]:
        """
        Remove a character and everything hanging off it.

        Returns the deleted character's id, or None when it did not exist.
        """
        async with self.db.transaction() as s:
            row = await s.scalar(
                select(Character).where(Character.author == author, Character.slug == slug)
            )
            if row is None:
                return None
            character_id = str(row.id)
            await self._delete_dependents(s, row.id, character_id)
            await s.delete(row)

        logger.info(f"Character {author}/{slug} deleted ({character_id})")
        return character_id

    @staticmethod
    async def _delete_dependents(s: AsyncSession, key: UUID, character_id: str) -> None:
        session_rows = (await s.execute(
            select(CharacterSession.id, CharacterSession.room_id)
            .where(CharacterSession.character_id == key)
        )).all()
        session_ids = [r.id for r in session_rows]
        room_ids = set(r.room_id for r in session_rows)
        room_ids.update((await s.scalars(select(Room.id).where(Room.character_id == key))).all())
        # the agent's own room carries its id
        room_ids.add(character_id)
        rooms = list(room_ids)

        await s.execute(delete(SessionNonce).where(
            or_(SessionNonce.session_id.in_(session_ids), SessionNonce.room_id.in_(rooms))
        ))
        await s.execute(delete(Memory).where(
            or_(Memory.room_id.in_(rooms), Memory.agent_id == character_id)
        ))
        await s.execute(delete(Goal).where(Goal.room_id.in_(rooms)))
        await s.execute(delete(Participant).where(Participant.room_id.in_(rooms)))
        await s.execute(delete(CharacterSession).where(CharacterSession.character_id == key))
        await s.execute(delete(Room).where(Room.id.in_(rooms)))
        await s.execute(delete(Account).where(Account.id == character_id))

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    async def get_character_secrets(self, character_id: str) -> dict[str, Any]:
        """
        Opened secrets of a character; a missing row is created with the
        server defaults.

        Raises:
            SecretsVerificationError: strict vault and an unverifiable blob
        """
        key = _as_uuid(character_id)
        if key is None:
            return default_secrets()
        async with self.db.transaction() as s:
            row = await s.scalar(select(CharacterSecret).where(CharacterSecret.character_id == key))
            if row is None:
                salt = self.vault.new_salt()
                row = CharacterSecret(
                    character_id=key,
                    salt=salt,
                    model_keys=self.vault.seal(default_secrets(), salt=salt),
                )
                s.add(row)
                logger.debug(f"Created default secrets for character {character_id}")
            blob = row.model_keys
        return self.vault.open(blob, character_id).values

    async def update_character_secrets(self, character_id: str, values: dict[str, Any]) -> bool:
        """Merge `values` into the character's secrets and reseal."""
        key = _as_uuid(character_id)
        if key is None:
            return False
        current = await self.get_character_secrets(character_id)
        merged = {**current, **values}
        salt = self.vault.new_salt()
        async with self.db.transaction() as s:
            row = await s.scalar(select(CharacterSecret).where(CharacterSecret.character_id == key))
            if row is None:
                return False
            row.salt = salt
            row.model_keys = self.vault.seal(merged, salt=salt)
            row.updated_at = utcnow()
        logger.info(f"Secrets of character {character_id} updated")
        return True
