"""
OfflineMemory Models - Schema for captured conversation memory.

Tables:
- items: Stored memories (captured messages and explicitly stored notes)
- embeddings: Cached embedding vectors, one row per item and model
"""

from sqlalchemy import Column, Integer, String, Text, JSON, LargeBinary, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase

from .text_utils import now_ms


class Base(DeclarativeBase):
    pass


class Item(Base):
    """
    A stored memory item.

    Captured messages carry tags="user" or tags="assistant"; explicitly stored
    memories carry their category (e.g. "personal", "work") or no tag at all.
    Items are never updated after insertion, only deleted (forget / GC).
    """
    __tablename__ = "items"

    id = Column(String, primary_key=True)

    # Epoch milliseconds
    created_at = Column(Integer, nullable=False, default=now_ms, index=True)

    title = Column(Text, nullable=True)
    text = Column(Text, nullable=False)

    # Single tag: role for captures, category for explicit memories
    tags = Column(String, nullable=True, index=True)

    source = Column(String, nullable=True)
    source_id = Column(String, nullable=True)

    # Attribution metadata (role, sessionKey, channel, ts, h)
    meta = Column(JSON, default=dict)

    # Attribution: who said it, which agent captured it, which conversation
    entity_id = Column(String, nullable=True, index=True)
    process_id = Column(String, nullable=True)
    session_id = Column(String, nullable=True, index=True)

    # SHA-1 of the normalized text, used by the capture dedupe window
    content_hash = Column(String(40), nullable=True, index=True)

    __table_args__ = (
        Index('ix_items_session_created', 'session_id', 'created_at'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "title": self.title,
            "text": self.text,
            "tags": self.tags,
            "source": self.source,
            "source_id": self.source_id,
            "meta": self.meta or {},
            "entity_id": self.entity_id,
            "process_id": self.process_id,
            "session_id": self.session_id,
            "content_hash": self.content_hash,
        }


class Embedding(Base):
    """
    Embedding vector for an item, stored as packed float32 bytes.

    Dependent on its item: removed together with it.
    """
    __tablename__ = "embeddings"

    item_id = Column(String, ForeignKey("items.id", ondelete="CASCADE"), primary_key=True)
    model = Column(String, primary_key=True)
    dim = Column(Integer, nullable=False)
    vector = Column(LargeBinary, nullable=False)
    created_at = Column(Integer, nullable=False, default=now_ms)
