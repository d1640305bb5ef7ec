"""Transactional document store on top of SQLAlchemy.

Documents are JSON bodies addressed by slash-separated paths. A unit of work
(``run_transaction``) follows the read-then-write discipline of hierarchical
document databases:

1. every read (``get``/``query``) happens before the first write;
2. writes (``set``/``update``/``delete``) are buffered;
3. on commit, the versions of every document read are re-checked and the
   writes are applied in a single database transaction. A version that moved
   means another writer committed in between: nothing is written and
   ``ConflictError`` is raised so the caller can retry from scratch.
"""

import copy
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from hoa_billing.models.document import Document
from hoa_billing.services.errors import ConflictError, NotFoundError, TransactionOrderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Version recorded for a path that was read while missing
MISSING = 0


def split_path(path: str) -> tuple[str, str]:
    """Split ``a/b/c/d`` into collection ``a/b/c`` and doc id ``d``."""
    if not path or "/" not in path:
        raise ValueError(f"Invalid document path: {path!r}")
    collection, doc_id = path.rsplit("/", 1)
    if not collection or not doc_id:
        raise ValueError(f"Invalid document path: {path!r}")
    return collection, doc_id


class StoreTransaction:
    """One atomic unit of work against the document store."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._read_versions: dict[str, int] = {}
        self._writes: list[tuple[str, str, dict[str, Any] | None]] = []

    @property
    def has_writes(self) -> bool:
        return bool(self._writes)

    def _check_read_allowed(self, path: str) -> None:
        if self.has_writes:
            raise TransactionOrderError(
                f"Read of {path} after a write in the same unit of work",
                {"path": path},
            )

    def get(self, path: str) -> dict[str, Any] | None:
        """Read one document; returns a private copy or None if it does not exist."""
        self._check_read_allowed(path)
        split_path(path)
        with self._session_factory() as session:
            doc = session.execute(select(Document).where(Document.path == path)).scalar_one_or_none()
            if doc is None:
                self._read_versions.setdefault(path, MISSING)
                return None
            self._read_versions[path] = doc.version
            return copy.deepcopy(doc.data)

    def query(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Read every document of a collection, ordered by doc id."""
        self._check_read_allowed(collection)
        with self._session_factory() as session:
            docs = (
                session.execute(
                    select(Document)
                    .where(Document.collection == collection)
                    .order_by(Document.doc_id)
                )
                .scalars()
                .all()
            )
            result = []
            for doc in docs:
                self._read_versions[doc.path] = doc.version
                result.append((doc.doc_id, copy.deepcopy(doc.data)))
            return result

    def set(self, path: str, data: dict[str, Any]) -> None:
        """Create or overwrite a document."""
        split_path(path)
        self._writes.append(("set", path, copy.deepcopy(data)))

    def update(self, path: str, fields: dict[str, Any]) -> None:
        """Merge top-level fields into an existing document."""
        split_path(path)
        self._writes.append(("update", path, copy.deepcopy(fields)))

    def delete(self, path: str) -> None:
        split_path(path)
        self._writes.append(("delete", path, None))

    def commit(self) -> int:
        """Verify read versions and apply buffered writes atomically.

        Returns:
            Number of write operations applied

        Raises:
            ConflictError: A document read by this unit of work changed since
            NotFoundError: ``update`` targets a document that does not exist
        """
        if not self.has_writes:
            return 0

        touched = set(self._read_versions) | {path for _, path, _ in self._writes}

        try:
            with self._session_factory() as session, session.begin():
                rows = (
                    session.execute(
                        select(Document).where(Document.path.in_(touched)).with_for_update()
                    )
                    .scalars()
                    .all()
                )
                current = {doc.path: doc for doc in rows}

                for path, seen_version in self._read_versions.items():
                    doc = current.get(path)
                    actual = doc.version if doc is not None else MISSING
                    if actual != seen_version:
                        raise ConflictError(
                            f"Document {path} was modified concurrently",
                            {"path": path, "expected": seen_version, "actual": actual},
                        )

                for op, path, data in self._writes:
                    doc = current.get(path)
                    if op == "delete":
                        if doc is not None:
                            session.delete(doc)
                            current.pop(path)
                    elif op == "set":
                        if doc is None:
                            collection, doc_id = split_path(path)
                            doc = Document(
                                path=path,
                                collection=collection,
                                doc_id=doc_id,
                                data=data,
                                version=1,
                            )
                            session.add(doc)
                            current[path] = doc
                        else:
                            doc.data = data
                            doc.version = doc.version + 1
                    elif op == "update":
                        if doc is None:
                            raise NotFoundError(
                                f"Cannot update missing document {path}", {"path": path}
                            )
                        merged = copy.deepcopy(doc.data)
                        merged.update(data)
                        doc.data = merged
                        doc.version = doc.version + 1
                    session.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Document created concurrently", {"paths": sorted(touched)}
            ) from e
        except OperationalError as e:
            raise ConflictError("Document store is busy", {"paths": sorted(touched)}) from e

        return len(self._writes)


class DocumentStore:
    """Document store facade bound to a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_session(cls, session: Session) -> "DocumentStore":
        """Build a store that opens sessions on the same engine as ``session``."""
        return cls(sessionmaker(bind=session.get_bind(), autoflush=False))

    def run_transaction(
        self,
        fn: Callable[[StoreTransaction], T],
        max_attempts: int = 1,
    ) -> T:
        """Run ``fn`` as one atomic unit of work.

        ``fn`` receives a ``StoreTransaction``; its return value is returned after
        a successful commit. Any exception raised by ``fn`` discards every buffered
        write. On ``ConflictError`` the whole function is re-run from scratch up
        to ``max_attempts`` times, then the conflict is raised.
        """
        attempt = 0
        while True:
            attempt += 1
            txn = StoreTransaction(self._session_factory)
            result = fn(txn)
            try:
                txn.commit()
                return result
            except ConflictError:
                if attempt >= max_attempts:
                    raise
                logger.warning(
                    "Unit of work conflicted (attempt %d/%d), retrying",
                    attempt,
                    max_attempts,
                )

    def get(self, path: str) -> dict[str, Any] | None:
        return StoreTransaction(self._session_factory).get(path)

    def version(self, path: str) -> int:
        """Current version of a document (0 when missing)."""
        with self._session_factory() as session:
            doc = session.execute(select(Document).where(Document.path == path)).scalar_one_or_none()
            return doc.version if doc is not None else MISSING

    def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        return StoreTransaction(self._session_factory).query(collection)

    def set(self, path: str, data: dict[str, Any]) -> None:
        """Write one document in its own unit of work."""
        txn = StoreTransaction(self._session_factory)
        txn.set(path, data)
        txn.commit()

    def delete(self, path: str) -> None:
        txn = StoreTransaction(self._session_factory)
        txn.delete(path)
        txn.commit()


__all__ = ["DocumentStore", "StoreTransaction", "split_path", "MISSING"]
