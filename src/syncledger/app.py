"""Application composition root.

``build_service`` wires the configured adapters into one explicit
:class:`SyncLedgerService`; nothing in the core reaches for globals.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, cast

from syncledger.adapters.airtable import AirtableRemoteStore
from syncledger.adapters.identity import EnvironmentIdentityProvider
from syncledger.adapters.sqlalchemy import (
    SqlAlchemyActivityLog,
    SqlAlchemyWorkspace,
    create_all_tables,
    create_sqlite_engine,
)
from syncledger.adapters.xano import XanoActivityLog
from syncledger.config import get_database_config, get_sync_config, get_xano_config
from syncledger.domain.checksum import same_value
from syncledger.domain.clock import utcnow
from syncledger.domain.errors import ValidationError
from syncledger.domain.model import ChangeAction
from syncledger.domain.reconciliation import AuthorityOrder, ConflictResolver, ResolutionPolicy
from syncledger.domain.rewind import RewindEngine
from syncledger.domain.sync import AutoSyncScheduler, SyncOrchestrator
from syncledger.domain.sync.orchestrator import ENTITY_TYPE
from syncledger.domain.tracking import ChangeTracker

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from syncledger.config import SyncConfig
    from syncledger.domain.clock import Clock
    from syncledger.domain.model import ChangeRecord
    from syncledger.domain.ports import ActivityLog, IdentityProvider, LocalWorkspace, RemoteStore
    from syncledger.domain.sync import SyncReport

log = getLogger(__name__)


@dataclass(slots=True)
class SyncLedgerService:
    """Everything one workspace needs: tracking, sync, rewind and their collaborators."""

    config: SyncConfig
    remote: RemoteStore
    workspace: LocalWorkspace
    activity_log: ActivityLog
    tracker: ChangeTracker
    resolver: ConflictResolver
    orchestrator: SyncOrchestrator
    scheduler: AutoSyncScheduler
    rewind: RewindEngine

    # Local edits ------------------------------------------------------------------

    def edit_record(
        self, table_ref: str, entity_id: str, fields: Mapping[str, object]
    ) -> list[ChangeRecord]:
        """Write ``fields`` into the workspace and track one record per changed field."""

        current = self.workspace.get_record(entity_id)
        if current is None:
            values = dict(fields)
            self.workspace.put_record(table_ref, entity_id, values)
            return [
                self.tracker.track_change(
                    ENTITY_TYPE, entity_id, ChangeAction.CREATE, None, values, table_ref=table_ref
                )
            ]

        values = dict(current.fields)
        records: list[ChangeRecord] = []
        for name, value in fields.items():
            before = values.get(name)
            if same_value(before, value):
                continue
            if value is None:
                values.pop(name, None)
            else:
                values[name] = value
            records.append(
                self.tracker.track_change(
                    ENTITY_TYPE,
                    entity_id,
                    ChangeAction.UPDATE,
                    before,
                    value,
                    name,
                    table_ref=current.table_ref,
                )
            )
        if records:
            self.workspace.put_record(current.table_ref, entity_id, values)
        return records

    def delete_record(self, entity_id: str) -> ChangeRecord | None:
        current = self.workspace.get_record(entity_id)
        if current is None:
            return None
        self.workspace.delete_record(entity_id)
        return self.tracker.track_change(
            ENTITY_TYPE,
            entity_id,
            ChangeAction.DELETE,
            dict(current.fields),
            None,
            table_ref=current.table_ref,
        )

    def undo(self) -> ChangeRecord | None:
        """Undo the latest tracked change and restore its ``before`` value locally."""

        record = self.tracker.undo()
        if record is not None:
            self._restore(record, record.before)
        return record

    def redo(self) -> ChangeRecord | None:
        record = self.tracker.redo()
        if record is not None:
            self._restore(record, record.after)
        return record

    def _restore(self, record: ChangeRecord, value: object) -> None:
        current = self.workspace.get_record(record.entity_id)
        table_ref = record.table_ref or (current.table_ref if current is not None else None)
        if record.field is not None:
            if current is None or table_ref is None:
                log.warning(
                    f"Cannot restore field {record.field} of missing record {record.entity_id}"
                )
                return
            values = dict(current.fields)
            if value is None:
                values.pop(record.field, None)
            else:
                values[record.field] = value
            self.workspace.put_record(table_ref, record.entity_id, values)
            return
        if value is None:
            self.workspace.delete_record(record.entity_id)
            return
        if table_ref is None or not isinstance(value, Mapping):
            raise ValidationError(
                f"Cannot restore {record.entity_id} from record {record.id}",
                reason="unrestorable_record",
            )
        self.workspace.put_record(
            table_ref, record.entity_id, dict(cast(Mapping[str, object], value))
        )

    # Sync -------------------------------------------------------------------------

    async def sync(self) -> SyncReport:
        return await self.orchestrator.run_pass()

    async def start(self) -> None:
        """Start batched activity delivery and, when configured, auto-sync."""

        await self.tracker.start()
        if self.config.auto_sync:
            self.scheduler.start()

    async def aclose(self) -> None:
        await self.scheduler.stop()
        outcome = await self.tracker.stop()
        if not outcome.ok:
            log.warning(f"{outcome.remaining} activity record(s) were not delivered")
        for resource in (self.remote, self.activity_log):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()


def build_resolver(config: SyncConfig) -> ConflictResolver:
    return ConflictResolver(
        ResolutionPolicy(
            authority=AuthorityOrder.of(config.authority_order),
            tie_break=config.tie_break,
            remote_write=config.superposed_remote_write,
        )
    )


def build_service(
    *,
    config: SyncConfig | None = None,
    remote: RemoteStore | None = None,
    activity_log: ActivityLog | None = None,
    workspace: LocalWorkspace | None = None,
    identity: IdentityProvider | None = None,
    engine: Engine | None = None,
    clock: Clock = utcnow,
) -> SyncLedgerService:
    """Assemble a service from explicit collaborators, falling back to configuration.

    The activity log defaults to Xano when ``XANO_BASE_URL`` is set and to the
    local database otherwise.
    """

    sync_config = config or get_sync_config()
    if workspace is None or activity_log is None:
        if engine is None:
            database = get_database_config()
            engine = create_sqlite_engine(database.uri, echo=database.echo)
        create_all_tables(engine)
    if workspace is None:
        workspace = SqlAlchemyWorkspace(cast("Engine", engine))
    if activity_log is None:
        xano = get_xano_config()
        if xano is not None:
            activity_log = XanoActivityLog(config=xano)
        else:
            activity_log = SqlAlchemyActivityLog(cast("Engine", engine))
    remote = remote or AirtableRemoteStore()
    identity = identity or EnvironmentIdentityProvider()

    tracker = ChangeTracker(
        activity_log,
        identity=identity,
        clock=clock,
        undo_capacity=sync_config.undo_capacity,
        history_capacity=sync_config.history_capacity,
        batch_size=sync_config.batch_size,
        batch_delay=sync_config.batch_delay_seconds,
    )
    resolver = build_resolver(sync_config)
    orchestrator = SyncOrchestrator(
        remote=remote,
        workspace=workspace,
        tracker=tracker,
        resolver=resolver,
        direction=sync_config.direction,
        strategy=sync_config.strategy,
        tables=sync_config.tables,
        identity=identity,
        clock=clock,
        conflict_capacity=sync_config.conflict_buffer_capacity,
    )
    scheduler = AutoSyncScheduler(orchestrator, interval=sync_config.interval_seconds)
    rewind = RewindEngine(
        activity_log=activity_log,
        workspace=workspace,
        tracker=tracker,
        clock=clock,
        cache_capacity=sync_config.preview_cache_capacity,
    )
    log.info(
        f"Built syncledger service: direction={sync_config.direction}, "
        f"strategy={sync_config.strategy}, activity_log={type(activity_log).__name__}"
    )
    return SyncLedgerService(
        config=sync_config,
        remote=remote,
        workspace=workspace,
        activity_log=activity_log,
        tracker=tracker,
        resolver=resolver,
        orchestrator=orchestrator,
        scheduler=scheduler,
        rewind=rewind,
    )
