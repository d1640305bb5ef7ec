"""Document ORM model backing the transactional document store."""

from typing import Any

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from hoa_billing.models import Base, BaseModel


class Document(Base, BaseModel):
    """A JSON document addressed by a slash-separated path.

    Paths mirror a hierarchical store: ``clients/{clientId}/bills/water/2026-03``
    lives in collection ``clients/{clientId}/bills/water`` with doc_id ``2026-03``.
    The version column is bumped on every write and checked on commit to detect
    concurrent modification.
    """

    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        unique=True,
        comment="Full document path (collection/doc_id)",
    )

    collection: Mapped[str] = mapped_column(
        String(450),
        nullable=False,
        index=True,
        comment="Parent collection path",
    )

    doc_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Document id inside its collection",
    )

    data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Document body",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency version",
    )

    __table_args__ = (Index("idx_document_collection_doc", "collection", "doc_id"),)

    def __repr__(self) -> str:
        return f"<Document(path={self.path!r}, version={self.version})>"


__all__ = ["Document"]
