"""Database-backed repository for planner documents."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import PersistenceAuditEventModel, StudyDocumentModel


def _normalize_owner(owner: str) -> str:
    normalized = owner.strip().lower()
    if not normalized:
        raise ValueError("Owner cannot be empty.")
    return normalized


class StudyDocumentRepository:
    """Whole-document persistence keyed by owner, collection and document id."""

    def get(self, session: Session, owner: str, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        model = self._find(session, owner, collection, document_id)
        if model is None:
            return None
        return dict(model.data or {})

    def upsert(
        self,
        session: Session,
        owner: str,
        collection: str,
        document_id: str,
        data: Dict[str, Any],
    ) -> None:
        normalized = _normalize_owner(owner)
        model = self._find(session, normalized, collection, document_id)
        if model is None:
            model = StudyDocumentModel(owner=normalized, collection=collection, document_id=document_id)
            session.add(model)
        model.data = dict(data)
        session.flush()

    def delete(self, session: Session, owner: str, collection: str, document_id: str) -> bool:
        model = self._find(session, owner, collection, document_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        self.record_audit(session, owner, "document_delete", {"collection": collection, "document_id": document_id})
        return True

    def list_collection(self, session: Session, owner: str, collection: str) -> Dict[str, Dict[str, Any]]:
        stmt = (
            select(StudyDocumentModel)
            .where(
                StudyDocumentModel.owner == _normalize_owner(owner),
                StudyDocumentModel.collection == collection,
            )
            .order_by(StudyDocumentModel.document_id.asc())
        )
        return {model.document_id: dict(model.data or {}) for model in session.execute(stmt).scalars()}

    def delete_collection(self, session: Session, owner: str, collection: str) -> int:
        normalized = _normalize_owner(owner)
        stmt = delete(StudyDocumentModel).where(
            StudyDocumentModel.owner == normalized,
            StudyDocumentModel.collection == collection,
        )
        result = session.execute(stmt)
        removed = int(result.rowcount or 0)
        self.record_audit(session, normalized, "collection_delete", {"collection": collection, "removed": removed})
        return removed

    def record_audit(self, session: Session, owner: str, event_type: str, payload: Dict[str, Any]) -> None:
        session.add(
            PersistenceAuditEventModel(
                owner=_normalize_owner(owner),
                event_type=event_type,
                payload=payload,
            )
        )

    def recent_audit_events(self, session: Session, owner: str, limit: int = 50) -> List[PersistenceAuditEventModel]:
        stmt = (
            select(PersistenceAuditEventModel)
            .where(PersistenceAuditEventModel.owner == _normalize_owner(owner))
            .order_by(PersistenceAuditEventModel.created_at.desc())
            .limit(limit)
        )
        return list(session.execute(stmt).scalars())

    def _find(self, session: Session, owner: str, collection: str, document_id: str) -> Optional[StudyDocumentModel]:
        stmt = select(StudyDocumentModel).where(
            StudyDocumentModel.owner == _normalize_owner(owner),
            StudyDocumentModel.collection == collection,
            StudyDocumentModel.document_id == document_id,
        )
        return session.execute(stmt).scalar_one_or_none()


study_documents = StudyDocumentRepository()

__all__ = ["StudyDocumentRepository", "study_documents"]
