"""Translate between change records and Xano activity rows."""

from __future__ import annotations

from typing import TYPE_CHECKING

from syncledger.domain.codec import (
    decode_resolution,
    encode_resolution,
    from_jsonable,
    to_jsonable,
)
from syncledger.domain.model import Agent, AgentKind, ChangeAction, SyncChange, build_change

from .schema import ActivityPayload

if TYPE_CHECKING:
    from syncledger.domain.model import ChangeRecord


def to_activity_payload(record: ChangeRecord) -> ActivityPayload:
    resolution = record.resolution if isinstance(record, SyncChange) else None
    return ActivityPayload(
        activity_id=record.id,
        timestamp=record.created_at,
        action=record.action,
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        field_name=record.field,
        table_id=record.table_ref,
        user_id=record.agent.id,
        user_name=record.agent.name,
        user_email=record.agent.email,
        user_kind=record.agent.kind.value,
        before=to_jsonable(record.before),
        after=to_jsonable(record.after),
        checksum_before=record.checksum_before,
        checksum_after=record.checksum_after,
        sync_session_id=resolution.session_id if resolution else None,
        sync_direction=resolution.direction.value if resolution else None,
        conflict_resolution=dict(encode_resolution(resolution)) if resolution else None,
        metadata={key: to_jsonable(value) for key, value in record.metadata.items()},
    )


def from_activity_payload(payload: ActivityPayload) -> ChangeRecord:
    agent = Agent(
        id=payload.user_id or "unknown",
        name=payload.user_name,
        kind=AgentKind(payload.user_kind) if payload.user_kind else AgentKind.USER,
        email=payload.user_email,
    )
    resolution = None
    if payload.action is ChangeAction.SYNC:
        resolution = decode_resolution(
            payload.conflict_resolution
            or {"session_id": payload.sync_session_id, "direction": payload.sync_direction}
        )
    return build_change(
        payload.action,
        resolution=resolution,
        id=payload.activity_id,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        field=payload.field_name,
        before=from_jsonable(payload.before),
        after=from_jsonable(payload.after),
        checksum_before=payload.checksum_before,
        checksum_after=payload.checksum_after,
        agent=agent,
        created_at=payload.timestamp,
        table_ref=payload.table_id,
        metadata={key: from_jsonable(value) for key, value in payload.metadata.items()},
    )
