"""Single-flight reconciliation passes between the workspace and the remote store.

A pass walks ``fetching -> diffing -> resolving -> applying -> logging``. Each
entity is compared three ways: current local fields, current remote fields and
the baseline stored when the entity was last reconciled. Fields changed on one
side are carried to the other; fields changed on both go through the
:class:`ConflictResolver`. Remote writes land before local writes, and the
baseline is only replaced once both succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Final
from uuid import uuid4

from syncledger.domain.bounded import BoundedStack
from syncledger.domain.checksum import changed_field_names, checksum, diff_fields, same_value
from syncledger.domain.clock import utcnow
from syncledger.domain.errors import ConsistencyError, SyncBusyError, SyncFailure, ValidationError
from syncledger.domain.events import SyncEvents, SyncStarted
from syncledger.domain.model import (
    Agent,
    AgentKind,
    ChangeAction,
    ConflictStrategy,
    ContextualValue,
    OverrideConflict,
    RemoteWriteMode,
    Scale,
    Side,
    SuperposedConflict,
    SyncDirection,
    SyncResolution,
    SyncStep,
    ValueContext,
    ValueMethod,
    build_change,
)
from syncledger.domain.ports import Baseline, RemoteRecord
from syncledger.domain.ports.identity import resolve_agent
from syncledger.domain.reconciliation import ConflictResolver

from .plan import EntityPlan, PlannedWrite
from .report import SyncReport

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from syncledger.domain.clock import Clock
    from syncledger.domain.model import ChangeRecord, Conflict, ContextFilter
    from syncledger.domain.ports import (
        IdentityProvider,
        LocalRecord,
        LocalWorkspace,
        RemoteStore,
        TableDefinition,
    )
    from syncledger.domain.tracking import ChangeTracker

log = getLogger(__name__)

ENTITY_TYPE: Final[str] = "record"
type _Candidate = tuple[str, str, LocalRecord | None, RemoteRecord | None, Baseline | None]

REMOTE_AGENT = Agent(id="remote-store", name="remote store", kind=AgentKind.SYSTEM)
DEFAULT_CONFLICT_CAPACITY = 100


@dataclass(frozen=True, slots=True, kw_only=True)
class ContextDefaults:
    """Provenance assumed for values read from one side of a pass."""

    method: ValueMethod
    scale: Scale
    source: str
    definition: str | None = None

    def build(self, *, captured_at: datetime, agent: Agent) -> ValueContext:
        return ValueContext(
            method=self.method,
            scale=self.scale,
            definition=self.definition,
            captured_at=captured_at,
            agent=agent,
            source=self.source,
        )


LOCAL_CONTEXT = ContextDefaults(method=ValueMethod.DECLARED, scale=Scale.INDIVIDUAL, source="local")
REMOTE_CONTEXT = ContextDefaults(
    method=ValueMethod.MEASURED, scale=Scale.ORGANIZATION, source="remote"
)


@dataclass(slots=True)
class _PassState:
    session_id: str
    agent: Agent
    fetched_at: datetime
    report: SyncReport


class SyncOrchestrator:
    def __init__(
        self,
        *,
        remote: RemoteStore,
        workspace: LocalWorkspace,
        tracker: ChangeTracker,
        resolver: ConflictResolver | None = None,
        direction: SyncDirection = SyncDirection.BIDIRECTIONAL,
        strategy: ConflictStrategy = ConflictStrategy.SUPERPOSITION,
        tables: Sequence[str] = (),
        identity: IdentityProvider | None = None,
        clock: Clock = utcnow,
        local_context: ContextDefaults = LOCAL_CONTEXT,
        remote_context: ContextDefaults = REMOTE_CONTEXT,
        view_filter: ContextFilter | None = None,
        conflict_capacity: int = DEFAULT_CONFLICT_CAPACITY,
    ) -> None:
        self.remote = remote
        self.workspace = workspace
        self.tracker = tracker
        self.resolver = resolver or ConflictResolver()
        self.direction = direction
        self.strategy = strategy
        self.tables = tuple(tables)
        self.identity = identity
        self.clock = clock
        self.local_context = local_context
        self.remote_context = remote_context
        self.view_filter = view_filter
        self.events = SyncEvents.create()
        self.last_report: SyncReport | None = None
        self.last_failure: SyncFailure | None = None
        self._recent_conflicts: BoundedStack[Conflict] = BoundedStack(conflict_capacity)
        self._step = SyncStep.IDLE
        self._current_entities: list[str] = []
        self._running = False

    @property
    def state(self) -> SyncStep:
        return self._step

    @property
    def is_running(self) -> bool:
        return self._running

    def recent_conflicts(self) -> list[Conflict]:
        """Conflicts from recent passes, newest first."""

        return list(reversed(list(self._recent_conflicts)))

    async def run_pass(self) -> SyncReport:
        """Run one reconciliation pass.

        Raises :class:`SyncBusyError` when a pass is already running and
        :class:`SyncFailure` when any step fails; dirty flags are only cleared
        for entities of a pass that completed.
        """

        if self._running:
            raise SyncBusyError()
        self._running = True
        self._current_entities = []
        session_id = f"sync_{uuid4().hex[:12]}"
        started_at = self.clock()
        state = _PassState(
            session_id=session_id,
            agent=resolve_agent(self.identity),
            fetched_at=started_at,
            report=SyncReport(
                session_id=session_id, direction=self.direction, started_at=started_at
            ),
        )
        log.info(f"Sync pass {session_id} started ({self.direction})")
        try:
            self.events.started.publish(SyncStarted(session_id))
            await self._run(state)
        except Exception as exc:
            failure = SyncFailure.from_error(
                exc, step=self._step, entity_ids=self._current_entities
            )
            self._step = SyncStep.FAILED
            self.last_failure = failure
            log.error(f"Sync pass {session_id} failed while {failure.step}: {exc}")
            self.events.failed.publish(failure)
            raise failure from exc
        finally:
            self._running = False

        report = state.report
        report.finished_at = self.clock()
        self.last_report = report
        self.last_failure = None
        self._step = SyncStep.IDLE
        log.info(f"Sync pass {session_id} finished: {report.summary()}")
        self.events.completed.publish(report)
        return report

    async def _run(self, state: _PassState) -> None:
        self._step = SyncStep.FETCHING
        schema = await self.remote.fetch_schema()
        tables = self._select_tables(schema)
        fetched: dict[str, dict[str, RemoteRecord]] = {}
        for table in tables:
            rows = await self.remote.fetch_records(table.ref)
            fetched[table.ref] = _index_remote(table.ref, rows)
        state.fetched_at = self.clock()

        self._step = SyncStep.DIFFING
        candidates: list[_Candidate] = []
        for table in tables:
            local_rows = {row.entity_id: row for row in self.workspace.list_records(table.ref)}
            baselines = {row.entity_id: row for row in self.workspace.list_baselines(table.ref)}
            remote_rows = fetched[table.ref]
            for entity_id in sorted(set(local_rows) | set(remote_rows) | set(baselines)):
                local = local_rows.get(entity_id)
                remote = remote_rows.get(entity_id)
                baseline = baselines.get(entity_id)
                if self._unchanged(entity_id, local, remote, baseline):
                    state.report.skipped += 1
                    continue
                candidates.append((table.ref, entity_id, local, remote, baseline))
        state.report.examined = len(candidates)
        self._current_entities = [entity_id for _, entity_id, *_ in candidates]

        self._step = SyncStep.RESOLVING
        plans = [
            self._plan(state, table_ref, entity_id, local, remote, baseline)
            for table_ref, entity_id, local, remote, baseline in candidates
        ]

        self._step = SyncStep.APPLYING
        records: list[ChangeRecord] = []
        applied: list[str] = []
        for plan in plans:
            try:
                entity_records = await self._apply(state, plan)
            except Exception as exc:
                if not applied:
                    raise
                self.tracker.enqueue(records)
                raise ConsistencyError(
                    f"Applying stopped at {plan.entity_id} after {len(applied)} entities: {exc}",
                    reason="partial_apply",
                    applied=applied,
                    failed=[plan.entity_id],
                ) from exc
            records.extend(entity_records)
            applied.append(plan.entity_id)

        self._step = SyncStep.LOGGING
        self.tracker.enqueue(records)
        outcome = await self.tracker.flush()
        outcome.raise_for_failure()
        state.report.records_logged = len(records)

        for plan in plans:
            if plan.blocked:
                continue
            if self.tracker.mark_clean(plan.entity_id, up_to_generation=plan.generation):
                state.report.reconciled.append(plan.entity_id)
        self._clear_orphans()

    # Fetching -------------------------------------------------------------------

    def _select_tables(self, schema: Sequence[TableDefinition]) -> list[TableDefinition]:
        if not self.tables:
            return sorted(schema, key=lambda table: table.ref)
        by_key = {table.ref: table for table in schema} | {table.name: table for table in schema}
        missing = [name for name in self.tables if name not in by_key]
        if missing:
            raise ValidationError(
                f"Unknown remote table(s): {', '.join(missing)}", reason="unknown_table"
            )
        selected = {by_key[name].ref: by_key[name] for name in self.tables}
        return [selected[ref] for ref in sorted(selected)]

    # Diffing --------------------------------------------------------------------

    def _unchanged(
        self,
        entity_id: str,
        local: LocalRecord | None,
        remote: RemoteRecord | None,
        baseline: Baseline | None,
    ) -> bool:
        if local is None or remote is None or baseline is None:
            return False
        if self.tracker.is_dirty(entity_id):
            return False
        return checksum(remote.fields) == baseline.remote_checksum and same_value(
            local.fields, baseline.local_fields
        )

    # Resolving ------------------------------------------------------------------

    def _plan(
        self,
        state: _PassState,
        table_ref: str,
        entity_id: str,
        local: LocalRecord | None,
        remote: RemoteRecord | None,
        baseline: Baseline | None,
    ) -> EntityPlan:
        local_fields = dict(local.fields) if local is not None else None
        remote_fields = dict(remote.fields) if remote is not None else None
        plan = EntityPlan(
            table_ref=table_ref,
            entity_id=entity_id,
            remote_id=entity_id if (remote is not None or baseline is not None) else None,
            generation=self.tracker.dirty_generation(entity_id),
            local_before=local_fields,
            remote_before=remote_fields,
            local_after=local_fields,
            remote_after=remote_fields,
        )

        if local_fields is not None and remote_fields is not None:
            self._plan_fields(state, plan, local_fields, remote_fields, remote, baseline)
        elif local_fields is not None:
            self._plan_local_only(plan, local_fields, baseline)
        elif remote_fields is not None:
            self._plan_remote_only(plan, remote_fields, baseline)
        else:
            plan.drop_baseline = True
        return plan

    def _plan_fields(
        self,
        state: _PassState,
        plan: EntityPlan,
        local_fields: dict[str, object],
        remote_fields: dict[str, object],
        remote: RemoteRecord | None,
        baseline: Baseline | None,
    ) -> None:
        base_local = baseline.local_fields if baseline else {}
        base_remote = baseline.remote_fields if baseline else {}
        local_changed = changed_field_names(base_local, local_fields)
        remote_changed = changed_field_names(base_remote, remote_fields)
        merged_local = dict(local_fields)
        merged_remote = dict(remote_fields)
        baseline_local = dict(local_fields)
        strategy = self._effective_strategy()

        for name in sorted(local_changed | remote_changed):
            local_value = local_fields.get(name)
            remote_value = remote_fields.get(name)
            if name in local_changed and name in remote_changed:
                conflict = self.resolver.resolve(
                    ContextualValue(local_value, self._local_context(plan, name, baseline)),
                    ContextualValue(remote_value, self._remote_context(state, remote)),
                    strategy,
                    entity_id=plan.entity_id,
                    field=name,
                    view_filter=self.view_filter,
                )
                self._apply_conflict(plan, conflict, merged_local, merged_remote)
            elif name in local_changed:
                if self.direction.pushes:
                    _assign(merged_remote, name, local_value)
                    plan.writes.append(
                        PlannedWrite(
                            side=Side.REMOTE, field=name, before=remote_value, after=local_value
                        )
                    )
                else:
                    plan.blocked = True
                    _assign(baseline_local, name, base_local.get(name))
            elif self.direction.pulls:
                _assign(merged_local, name, remote_value)
                _assign(baseline_local, name, remote_value)
                plan.writes.append(
                    PlannedWrite(
                        side=Side.LOCAL, field=name, before=local_value, after=remote_value
                    )
                )
            else:
                plan.blocked = True

        for conflict_write in plan.writes:
            if conflict_write.side is Side.LOCAL and conflict_write.conflict is not None:
                _assign(baseline_local, conflict_write.field or "", conflict_write.after)
        plan.local_after = merged_local
        plan.remote_after = merged_remote
        plan.baseline_local = baseline_local

    def _apply_conflict(
        self,
        plan: EntityPlan,
        conflict: Conflict,
        merged_local: dict[str, object],
        merged_remote: dict[str, object],
    ) -> None:
        name = conflict.field
        local_value, remote_value = conflict.local.value, conflict.remote.value
        if isinstance(conflict, OverrideConflict):
            plan.conflicts.append(conflict)
            if conflict.winner is Side.LOCAL:
                _assign(merged_remote, name, local_value)
                plan.writes.append(
                    PlannedWrite(
                        side=Side.REMOTE,
                        field=name,
                        before=remote_value,
                        after=local_value,
                        conflict=conflict,
                    )
                )
            else:
                _assign(merged_local, name, remote_value)
                plan.writes.append(
                    PlannedWrite(
                        side=Side.LOCAL,
                        field=name,
                        before=local_value,
                        after=remote_value,
                        conflict=conflict,
                    )
                )
        elif isinstance(conflict, SuperposedConflict):
            plan.conflicts.append(conflict)
            _assign(merged_local, name, conflict.cell)
            plan.writes.append(
                PlannedWrite(
                    side=Side.LOCAL,
                    field=name,
                    before=local_value,
                    after=conflict.cell,
                    conflict=conflict,
                )
            )
            if conflict.remote_write is RemoteWriteMode.DOMINANT and not same_value(
                conflict.remote_value, remote_value
            ):
                _assign(merged_remote, name, conflict.remote_value)
                plan.writes.append(
                    PlannedWrite(
                        side=Side.REMOTE,
                        field=name,
                        before=remote_value,
                        after=conflict.remote_value,
                        conflict=conflict,
                    )
                )

    def _plan_local_only(
        self,
        plan: EntityPlan,
        local_fields: dict[str, object],
        baseline: Baseline | None,
    ) -> None:
        plan.remote_id = None
        if baseline is None:
            self._push_create(plan, local_fields)
            return
        # The remote row was deleted since the last pass.
        local_edited = self.tracker.is_dirty(plan.entity_id) or not same_value(
            local_fields, baseline.local_fields
        )
        if self.direction is SyncDirection.BIDIRECTIONAL:
            keep_local = local_edited
        else:
            keep_local = self.direction is SyncDirection.LOCAL_TO_REMOTE
        if keep_local:
            self._push_create(plan, local_fields)
        elif self.direction.pulls:
            plan.local_after = None
            plan.drop_baseline = True
            plan.writes.append(
                PlannedWrite(
                    side=Side.LOCAL, field=None, before=local_fields, after=None, operation="delete"
                )
            )
        else:
            plan.blocked = True

    def _push_create(self, plan: EntityPlan, local_fields: dict[str, object]) -> None:
        if not self.direction.pushes:
            plan.blocked = True
            return
        plan.remote_after = dict(local_fields)
        plan.baseline_local = dict(local_fields)
        plan.writes.append(
            PlannedWrite(
                side=Side.REMOTE, field=None, before=None, after=local_fields, operation="create"
            )
        )

    def _plan_remote_only(
        self,
        plan: EntityPlan,
        remote_fields: dict[str, object],
        baseline: Baseline | None,
    ) -> None:
        if baseline is None:
            keep_remote = True
        else:
            # The local record was deleted since the last pass.
            remote_edited = checksum(remote_fields) != baseline.remote_checksum
            if self.direction is SyncDirection.BIDIRECTIONAL:
                keep_remote = remote_edited
            else:
                keep_remote = self.direction is SyncDirection.REMOTE_TO_LOCAL
        if keep_remote:
            if not self.direction.pulls:
                plan.blocked = True
                return
            plan.local_after = dict(remote_fields)
            plan.baseline_local = dict(remote_fields)
            plan.writes.append(
                PlannedWrite(
                    side=Side.LOCAL,
                    field=None,
                    before=None,
                    after=remote_fields,
                    operation="create",
                )
            )
        elif self.direction.pushes:
            plan.remote_after = None
            plan.drop_baseline = True
            plan.writes.append(
                PlannedWrite(
                    side=Side.REMOTE,
                    field=None,
                    before=remote_fields,
                    after=None,
                    operation="delete",
                )
            )
        else:
            plan.blocked = True

    def _effective_strategy(self) -> ConflictStrategy:
        if self.direction is SyncDirection.REMOTE_TO_LOCAL:
            return ConflictStrategy.REMOTE_WINS
        if self.direction is SyncDirection.LOCAL_TO_REMOTE:
            return ConflictStrategy.LOCAL_WINS
        return self.strategy

    def _local_context(
        self, plan: EntityPlan, field_name: str, baseline: Baseline | None
    ) -> ValueContext:
        record = self.tracker.latest_change(plan.entity_id, field_name)
        if record is None:
            record = self.tracker.latest_change(plan.entity_id)
        if record is not None:
            return self.local_context.build(captured_at=record.created_at, agent=record.agent)
        captured_at = baseline.reconciled_at if baseline is not None else self.clock()
        return self.local_context.build(
            captured_at=captured_at, agent=resolve_agent(self.identity)
        )

    def _remote_context(self, state: _PassState, remote: RemoteRecord | None) -> ValueContext:
        captured_at = remote.modified_at if remote and remote.modified_at else state.fetched_at
        return self.remote_context.build(captured_at=captured_at, agent=REMOTE_AGENT)

    # Applying -------------------------------------------------------------------

    async def _apply(self, state: _PassState, plan: EntityPlan) -> list[ChangeRecord]:
        report = state.report
        for conflict in plan.conflicts:
            self._recent_conflicts.push(conflict)
            report.conflicts.append(conflict)
            self.events.conflict.publish(conflict)

        stored_remote = plan.remote_before
        remote_id = plan.remote_id
        if plan.touches_remote:
            if plan.remote_after is None:
                if remote_id is not None:
                    await self.remote.delete_record(plan.table_ref, remote_id)
                stored_remote = None
                report.remote.deleted += 1
            elif plan.remote_before is None:
                created = await self.remote.write_record(
                    plan.table_ref, RemoteRecord(id=None, fields=dict(plan.remote_after))
                )
                remote_id, stored_remote = created.id, dict(created.fields)
                report.remote.created += 1
            else:
                diffs = diff_fields(plan.remote_before, plan.remote_after)
                changes = {diff.field: diff.after for diff in diffs}
                updated = await self.remote.write_record(
                    plan.table_ref, RemoteRecord(id=remote_id, fields=changes)
                )
                stored_remote = dict(updated.fields)
                report.remote.updated += 1

        entity_id = plan.entity_id
        extra_writes: list[PlannedWrite] = []
        if remote_id is not None and remote_id != entity_id and plan.local_after is not None:
            self.workspace.delete_record(entity_id)
            self.workspace.put_record(plan.table_ref, remote_id, plan.local_after)
            self.workspace.drop_baseline(entity_id)
            extra_writes.append(
                PlannedWrite(
                    side=Side.LOCAL,
                    field=None,
                    before=None,
                    after=plan.local_after,
                    operation="rekey",
                )
            )
            log.debug(f"Re-keyed local {entity_id} to remote id {remote_id}")
            entity_id = remote_id
        elif plan.touches_local:
            if plan.local_after is None:
                self.workspace.delete_record(entity_id)
                report.local.deleted += 1
            else:
                self.workspace.put_record(plan.table_ref, entity_id, plan.local_after)
                if plan.local_before is None:
                    report.local.created += 1
                else:
                    report.local.updated += 1

        if plan.drop_baseline or (stored_remote is None and plan.local_after is None):
            self.workspace.drop_baseline(entity_id)
        elif stored_remote is not None and plan.local_after is not None and plan.writes:
            self.workspace.save_baseline(
                Baseline(
                    entity_id=entity_id,
                    table_ref=plan.table_ref,
                    local_fields=dict(
                        plan.baseline_local if plan.baseline_local is not None else plan.local_after
                    ),
                    remote_fields=stored_remote,
                    remote_checksum=checksum(stored_remote),
                    reconciled_at=self.clock(),
                )
            )
        elif stored_remote is not None and plan.local_after is not None and not plan.blocked:
            # Nothing to write, e.g. both sides made the same edit.
            self.workspace.save_baseline(
                Baseline(
                    entity_id=entity_id,
                    table_ref=plan.table_ref,
                    local_fields=dict(plan.local_after),
                    remote_fields=stored_remote,
                    remote_checksum=checksum(stored_remote),
                    reconciled_at=self.clock(),
                )
            )

        metadata: dict[str, object] = {}
        if entity_id != plan.entity_id:
            metadata["previous_id"] = plan.entity_id
        return [
            self._record(state, plan, entity_id, write, metadata)
            for write in (*plan.writes, *extra_writes)
        ]

    def _record(
        self,
        state: _PassState,
        plan: EntityPlan,
        entity_id: str,
        write: PlannedWrite,
        metadata: Mapping[str, object],
    ) -> ChangeRecord:
        conflict = write.conflict
        remote_write: RemoteWriteMode | None = None
        information_loss = False
        if isinstance(conflict, SuperposedConflict):
            remote_write = conflict.remote_write
            information_loss = conflict.information_loss
        resolution = SyncResolution(
            session_id=state.session_id,
            direction=self.direction,
            outcome=conflict.outcome if conflict is not None else None,
            strategy=conflict.strategy if conflict is not None else None,
            target=write.side.value,
            remote_write=remote_write,
            information_loss=information_loss,
        )
        return build_change(
            ChangeAction.SYNC,
            resolution=resolution,
            entity_type=ENTITY_TYPE,
            entity_id=entity_id,
            field=write.field,
            before=write.before,
            after=write.after,
            checksum_before=checksum(write.before),
            checksum_after=checksum(write.after),
            agent=state.agent,
            created_at=self.clock(),
            table_ref=plan.table_ref,
            metadata={**metadata, "operation": write.operation},
        )

    def _clear_orphans(self) -> None:
        """Clean dirty entities that no longer exist locally and were never reconciled."""

        for entity_id in sorted(self.tracker.dirty_entities()):
            if self.workspace.get_record(entity_id) is None and (
                self.workspace.get_baseline(entity_id) is None
            ):
                self.tracker.mark_clean(entity_id)


def _index_remote(table_ref: str, rows: Sequence[RemoteRecord]) -> dict[str, RemoteRecord]:
    indexed: dict[str, RemoteRecord] = {}
    for row in rows:
        if row.id is None:
            log.warning(f"Ignoring remote row without an id in {table_ref}")
            continue
        indexed[row.id] = row
    return indexed


def _assign(fields: dict[str, object], name: str, value: object) -> None:
    if value is None:
        fields.pop(name, None)
    else:
        fields[name] = value
