"""Database models for characters, sessions and memories."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CHAR,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses CHAR(36).
    """
    impl = CHAR(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is not None and not isinstance(value, UUID):
            return UUID(value)
        return value


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ============================================================================
# Characters
# ============================================================================

class Character(Base):
    """AI character owned by an author, unique per (author, name)."""

    __tablename__ = "characters"
    __table_args__ = (
        UniqueConstraint("author", "name", name="uq_character_author_name"),
        UniqueConstraint("author", "slug", name="uq_character_author_slug"),
    )

    id: Mapped[UUID] = mapped_column(GUID(), primary_key=True, default=uuid4)
    author: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)
    model_provider: Mapped[str] = mapped_column(String(50), default="openai", nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # JSON-encoded dict
    settings: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="private", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    lore: Mapped[list["CharacterLore"]] = relationship(
        back_populates="character", cascade="all, delete-orphan",
        lazy="selectin", order_by="CharacterLore.order_index",
    )
    topics: Mapped[list["CharacterTopic"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    styles: Mapped[list["CharacterStyle"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    adjectives: Mapped[list["CharacterAdjective"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    message_examples: Mapped[list["CharacterMessageExample"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin",
        order_by=lambda: [
            CharacterMessageExample.conversation_index,
            CharacterMessageExample.message_order,
        ],
    )
    posts: Mapped[list["CharacterPost"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    clients: Mapped[list["CharacterClient"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    wallets: Mapped[list["CharacterWallet"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    secrets: Mapped[Optional["CharacterSecret"]] = relationship(
        cascade="all, delete-orphan", uselist=False, lazy="selectin"
    )


class CharacterLore(Base):
    __tablename__ = "character_lore"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    lore_text: Mapped[str] = mapped_column(Text, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0)

    character: Mapped["Character"] = relationship(back_populates="lore")


class CharacterTopic(Base):
    __tablename__ = "character_topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    topic: Mapped[str] = mapped_column(String(255), nullable=False)


class CharacterStyle(Base):
    """Style directive in one of three categories: all, chat, post."""

    __tablename__ = "character_styles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    category: Mapped[str] = mapped_column(String(10), nullable=False)
    style_text: Mapped[str] = mapped_column(Text, nullable=False)


class CharacterAdjective(Base):
    __tablename__ = "character_adjectives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    adjective: Mapped[str] = mapped_column(String(100), nullable=False)


class CharacterMessageExample(Base):
    """One line of an example conversation."""

    __tablename__ = "character_message_examples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    conversation_index: Mapped[int] = mapped_column(Integer, default=0)
    user: Mapped[str] = mapped_column(String(100), nullable=False)
    # JSON-encoded content dict
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_order: Mapped[int] = mapped_column(Integer, default=0)


class CharacterPost(Base):
    __tablename__ = "character_posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    post_text: Mapped[str] = mapped_column(Text, nullable=False)


class CharacterClient(Base):
    __tablename__ = "character_clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    client: Mapped[str] = mapped_column(String(50), nullable=False)


class CharacterWallet(Base):
    __tablename__ = "character_wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)


class CharacterSecret(Base):
    """Signed secrets blob, one per character."""

    __tablename__ = "character_secrets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), unique=True
    )
    salt: Mapped[str] = mapped_column(String(64), nullable=False)
    # JSON {salt, data, signature}
    model_keys: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# ============================================================================
# Rooms and Sessions
# ============================================================================

class Room(Base):
    """Conversation context; points at its current session."""

    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    character_id: Mapped[Optional[UUID]] = mapped_column(GUID(), nullable=True, index=True)
    current_session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_active: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CharacterSession(Base):
    __tablename__ = "character_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    character_id: Mapped[UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    room_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_active: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SessionNonce(Base):
    """Current nonce of a session; replaced on every issue."""

    __tablename__ = "session_nonces"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    room_id: Mapped[str] = mapped_column(String(255), nullable=False)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ============================================================================
# Memories
# ============================================================================

class Memory(Base):
    """Typed, timestamped record of one exchanged message or event."""

    __tablename__ = "memories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    type: Mapped[str] = mapped_column(String(50), default="message", nullable=False, index=True)
    # JSON-encoded content; legacy rows may hold a raw string
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # float32 vector bytes
    embedding: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    user_name: Mapped[str] = mapped_column(String(255), default="guest", nullable=False)
    room_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("rooms.id"), nullable=False, index=True
    )
    agent_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    is_unique: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    importance_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    room_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="IN_PROGRESS", nullable=False)
    # JSON list of {description, completed}
    objectives: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# ============================================================================
# Actors
# ============================================================================

class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # JSON-encoded dict
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("user_id", "room_id", name="uq_participant_user_room"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    room_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Relationship(Base):
    """Undirected pair; user_a <= user_b is enforced on write."""

    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint("user_a", "user_b", name="uq_relationship_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_a: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_b: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), default="FRIENDS", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
