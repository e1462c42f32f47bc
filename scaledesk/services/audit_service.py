from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from scaledesk.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor: str | None,
    action: str,
    job_id: int | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor=actor,
            action=action,
            job_id=job_id,
            meta=metadata or {},
        )
    )


def list_job_audit(db: Session, *, job_id: int) -> list[dict]:
    rows = db.execute(
        select(AuditLog).where(AuditLog.job_id == job_id).order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    ).scalars().all()
    return [
        {
            'id': row.id,
            'actor': row.actor,
            'action': row.action,
            'metadata': row.meta,
            'created_at': row.created_at,
        }
        for row in rows
    ]
