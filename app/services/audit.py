from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.inspection import inspect

from app.models.audit_log import AuditLog


def _serialize(value: object) -> object:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {key: _serialize(val) for key, val in value.items()}
    return value


def snapshot(value: object | None, fields: tuple[str, ...] | None = None) -> dict | None:
    """Plain-JSON copy of a model row or dict, optionally limited to ``fields``."""
    if value is None:
        return None
    if isinstance(value, dict):
        payload = dict(value)
    elif hasattr(value, "model_dump"):
        payload = value.model_dump(mode="json")
    else:
        mapper = inspect(value).mapper
        payload = {attr.key: getattr(value, attr.key) for attr in mapper.column_attrs}
    if fields is not None:
        payload = {key: payload.get(key) for key in fields}
    return _serialize(payload)


async def record_audit(
    session: AsyncSession,
    actor_id: int | None,
    entity: str,
    action: str,
    before: object | None,
    after: object | None,
    *,
    entity_id: int | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    log = AuditLog(
        actor_id=actor_id,
        entity=entity,
        entity_id=entity_id,
        action=action,
        before_json=snapshot(before),
        after_json=snapshot(after),
        ip=ip,
        user_agent=user_agent,
    )
    session.add(log)
    return log
