import json

from sqlalchemy.orm import Session

from workers_api.models.auth import AuditLog


def add_audit(db: Session, entity: str, entity_id: str | int | None, action: str, actor: str, payload: dict, commit: bool = True):
    row = AuditLog(
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        actor=actor or 'system',
        payload_json=json.dumps(payload, ensure_ascii=False, default=str),
    )
    db.add(row)
    if commit:
        db.commit()
    return row
