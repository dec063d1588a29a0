"""
Reconciliation engine.

One invocation runs a fixed sequence of phases for a (user, provider) pair::

    Idle -> Pulling -> Diffing -> Applying -> Pushing -> Idle
                    (any phase) -> Failed

Pulling fetches each remote collection independently, so one failing
collection yields a ``partial`` job instead of aborting the others. It also
drains the provider's sync inbox, which is the only source for providers
without a REST client. Diffing classifies pulled records as new, unchanged,
changed or deleted against their entity mappings; unchanged records are never
written. Pushing runs only for providers whose sync mode allows it.

When a record changed on both sides since the last sync, the pulled version
overwrites the local one. A record deleted locally keeps a tombstone mapping:
pulls never bring it back, and providers that accept deletes get one on the
next push.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifesync.config import get_settings
from lifesync.core.clock import Clock, LoopClock
from lifesync.core.errors import (
    AuthExpired,
    ExternalAPIError,
    IntegrationNotConnected,
    RemoteRejected,
    RemoteUnavailable,
    SyncError,
    SyncTimeout,
    UnknownProvider,
)
from lifesync.core.external_api import ProviderClient
from lifesync.core.fingerprint import content_hash, local_record_id
from lifesync.models import SyncInboxItem
from lifesync.schemas.integration import Credentials, ProviderDescription, SyncMode
from lifesync.schemas.sync import (
    ChangeKind,
    PushRecord,
    PushResult,
    RejectedRecord,
    RemoteRecord,
    SyncDirection,
    SyncOutcome,
    SyncPhase,
    SyncReport,
    SyncTrigger,
)
from lifesync.services.inbox import InboxPayloadError, SyncInbox
from lifesync.services.integration_service import IntegrationService
from lifesync.services.ledger import SyncJobLedger
from lifesync.services.record_store import RecordStore
from lifesync.services.registry import IntegrationRegistry

logger = logging.getLogger(__name__)


@dataclass
class PlannedChange:
    """A pulled record and what applying it means locally."""

    kind: ChangeKind
    local_id: str
    record: RemoteRecord
    digest: str
    # The local record was deleted; only the mapping is left to clean up
    tombstone: bool = False


@dataclass
class _SyncContext:
    report: SyncReport
    info: ProviderDescription
    mode: SyncMode
    client: Optional[ProviderClient]
    credentials: Credentials
    since: Optional[datetime]


class ReconciliationEngine:
    """Pulls, diffs, applies and pushes for one provider at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: SyncJobLedger,
        clients: dict[str, ProviderClient],
        registry: Optional[IntegrationRegistry] = None,
        integrations: Optional[IntegrationService] = None,
        records: Optional[RecordStore] = None,
        inbox: Optional[SyncInbox] = None,
        clock: Optional[Clock] = None,
        sync_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.clients = clients
        self.clock = clock or LoopClock()
        self.registry = registry or IntegrationRegistry()
        self.integrations = integrations or IntegrationService(self.registry, self.clock)
        self.records = records or RecordStore(self.clock)
        self.inbox = inbox or SyncInbox(self.clock)
        self.sync_timeout = (
            sync_timeout if sync_timeout is not None else get_settings().sync_timeout_seconds
        )
        # Only pairs with a job in flight are tracked
        self._phases: dict[tuple[str, str], SyncPhase] = {}

    def phase(self, user_id: str, provider: str) -> SyncPhase:
        return self._phases.get((user_id, provider), SyncPhase.IDLE)

    def _enter(self, report: SyncReport, phase: SyncPhase) -> None:
        self._phases[(report.user_id, report.provider)] = phase
        logger.debug(f"Sync job {report.job_id}: {phase.value}")

    async def reconcile(
        self,
        user_id: str,
        provider: str,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        direction: SyncDirection = SyncDirection.BIDIRECTIONAL,
    ) -> Optional[SyncReport]:
        """
        Run one reconciliation for a user and provider.

        Returns:
            The finalized report, or None when the provider's sync mode leaves
            nothing to do for ``direction`` (no job is opened).

        Raises:
            UnknownProvider: provider not in the registry, or its REST client is missing
            IntegrationNotConnected: provider not connected or sync disabled
            AlreadyRunning: another job for this pair is still pending
        """
        info = self.registry.describe(provider)
        client = self.clients.get(provider)
        if client is None and info.has_client:
            raise UnknownProvider(f"no client available for provider '{provider}'")

        async with self.session_factory() as db:
            config = await self.integrations.get_config(db, user_id, provider)
        if config is None or not config.connected:
            raise IntegrationNotConnected(f"{provider} is not connected for this user")
        if not config.sync_enabled:
            raise IntegrationNotConnected(f"sync is disabled for {provider}")

        mode = SyncMode(config.sync_mode)
        will_pull = direction.pulls and mode.supports_pull
        will_push = (
            direction.pushes
            and client is not None
            and self.registry.can_push(provider, mode)
        )
        if not will_pull and not will_push:
            logger.info(
                f"Nothing to {direction.value} for {provider} in '{mode.value}' mode; skipping"
            )
            return None

        job_id = await self.ledger.begin(user_id, provider, trigger, direction)
        report = SyncReport(
            job_id=job_id,
            user_id=user_id,
            provider=provider,
            trigger=trigger,
            direction=direction,
        )
        ctx = _SyncContext(
            report=report,
            info=info,
            mode=mode,
            client=client,
            credentials=Credentials.model_validate(config.credentials or {}),
            since=config.last_synced,
        )

        try:
            try:
                async with self.session_factory() as db:
                    await self.integrations.mark_syncing(db, user_id, provider)
                    await db.commit()
                await asyncio.wait_for(
                    self._run(ctx, will_pull, will_push), timeout=self.sync_timeout
                )
            except asyncio.TimeoutError:
                report.error = SyncTimeout(
                    f"sync exceeded {self.sync_timeout:g}s wall-clock ceiling"
                ).describe()
            except SyncError as e:
                report.error = e.describe()
            except asyncio.CancelledError:
                report.error = "cancelled"
                report.outcome = SyncOutcome.FAILED
                self._enter(report, SyncPhase.FAILED)
                await self._finalize(report)
                raise
            except Exception as e:
                logger.exception(f"Sync job {job_id} crashed")
                report.error = f"{type(e).__name__}: {e}"

            report.outcome = self._outcome(report)
            if report.outcome == SyncOutcome.FAILED:
                self._enter(report, SyncPhase.FAILED)
            else:
                self._enter(report, SyncPhase.IDLE)
            await self._finalize(report)
            return report
        finally:
            self._phases.pop((user_id, provider), None)

    async def _run(self, ctx: _SyncContext, will_pull: bool, will_push: bool) -> None:
        if will_pull:
            self._enter(ctx.report, SyncPhase.PULLING)
            pulled = await self._pull(ctx)
            inbox_records, inbox_ids = await self._collect_inbox(ctx)

            self._enter(ctx.report, SyncPhase.DIFFING)
            plan = await self._diff(ctx, pulled + inbox_records)

            self._enter(ctx.report, SyncPhase.APPLYING)
            await self._apply(ctx, plan)
            await self._settle_inbox(ctx, inbox_ids)

        if will_push:
            self._enter(ctx.report, SyncPhase.PUSHING)
            await self._push(ctx)
        else:
            ctx.report.push_skipped = True

    # ============== Pulling ==============

    async def _pull(self, ctx: _SyncContext) -> list[RemoteRecord]:
        report = ctx.report
        pulled: list[RemoteRecord] = []
        if ctx.client is None:
            return pulled

        for collection in ctx.info.collections:
            try:
                state = await ctx.client.fetch_remote_state(
                    ctx.credentials, collection, ctx.since
                )
            except AuthExpired:
                # Account-level: every collection would fail the same way
                raise
            except ExternalAPIError as e:
                logger.warning(f"Pull of {ctx.info.key}/{collection} failed: {e.describe()}")
                report.collection_errors[collection] = e.describe()
                continue

            pulled.extend(state.records)
            report.collections_synced.append(collection)
            # The next incremental pull starts where the oldest collection snapshot ended
            if report.pulled_as_of is None or state.as_of < report.pulled_as_of:
                report.pulled_as_of = state.as_of
        return pulled

    async def _collect_inbox(self, ctx: _SyncContext) -> tuple[list[RemoteRecord], list[str]]:
        """Translate pending inbox payloads; unusable ones are failed right away."""
        report = ctx.report
        latest: dict[tuple[str, str], RemoteRecord] = {}
        item_ids: list[str] = []
        failed: list[tuple[str, str, str]] = []

        async with self.session_factory() as db:
            items = await self.inbox.pending(db, report.user_id, report.provider)
            for item in items:
                try:
                    record = self.inbox.to_remote_record(item)
                except InboxPayloadError as e:
                    self.inbox.mark_failed(item, report.job_id, str(e))
                    failed.append((item.id, item.entity_type, str(e)))
                    continue
                # Later payloads for the same remote record supersede earlier ones
                latest[(record.entity_type, record.external_id)] = record
                item_ids.append(item.id)
            await db.commit()

        for item_id, entity_type, error in failed:
            report.inbox_failed += 1
            await self.ledger.add_log(
                report.user_id,
                report.provider,
                "warning",
                f"Inbox payload {item_id} skipped: {error}",
                job_id=report.job_id,
                details={"inbox_item_id": item_id, "entity_type": entity_type},
            )

        if not items:
            logger.debug(f"Sync job {report.job_id}: no pending inbox payloads")
        if ctx.client is None:
            # The inbox is the whole remote state of a clientless provider
            report.pulled_as_of = self.clock.now()
        return list(latest.values()), item_ids

    async def _settle_inbox(self, ctx: _SyncContext, item_ids: list[str]) -> None:
        if not item_ids:
            return
        async with self.session_factory() as db:
            for item_id in item_ids:
                item = await db.get(SyncInboxItem, item_id)
                if item is not None:
                    self.inbox.mark_processed(item, ctx.report.job_id)
            await db.commit()
        ctx.report.inbox_processed += len(item_ids)

    # ============== Diffing ==============

    async def _diff(
        self,
        ctx: _SyncContext,
        pulled: list[RemoteRecord],
    ) -> list[PlannedChange]:
        report = ctx.report
        plan: list[PlannedChange] = []

        async with self.session_factory() as db:
            for record in pulled:
                change = await self._classify(db, report, record)
                if change is None:
                    continue
                if change.kind == ChangeKind.UNCHANGED:
                    report.unchanged_count += 1
                else:
                    plan.append(change)
        return plan

    async def _classify(
        self,
        db: AsyncSession,
        report: SyncReport,
        record: RemoteRecord,
    ) -> Optional[PlannedChange]:
        local_id = local_record_id(report.provider, record.category, record.external_id)
        mapping = await self.records.get_mapping(db, report.user_id, report.provider, local_id)
        if mapping is None:
            # Records first pushed from here keep their original local id
            mapping = await self.records.get_mapping_by_remote(
                db, report.user_id, report.provider, record.entity_type, record.external_id
            )
            if mapping is not None:
                local_id = mapping.local_id

        digest = content_hash(record.fields)
        if mapping is not None and mapping.deleted_at is not None:
            if not record.deleted:
                # Deleted locally; never re-imported
                return None
            return PlannedChange(
                kind=ChangeKind.DELETED,
                local_id=local_id,
                record=record,
                digest=digest,
                tombstone=True,
            )

        if record.deleted:
            if mapping is None:
                return None
            kind = ChangeKind.DELETED
        elif mapping is None:
            kind = ChangeKind.NEW
        elif mapping.last_synced_hash == digest or (
            record.checksum is not None and mapping.remote_checksum == record.checksum
        ):
            kind = ChangeKind.UNCHANGED
        else:
            kind = ChangeKind.CHANGED
        return PlannedChange(kind=kind, local_id=local_id, record=record, digest=digest)

    # ============== Applying ==============

    async def _apply(self, ctx: _SyncContext, plan: list[PlannedChange]) -> None:
        if not plan:
            return
        report = ctx.report

        async with self.session_factory() as db:
            for change in plan:
                if change.tombstone:
                    # Both sides agree the record is gone
                    await self.records.delete_mappings(
                        db, report.user_id, report.provider, change.local_id
                    )
                    continue
                if change.kind == ChangeKind.DELETED:
                    if not ctx.mode.applies_deletes:
                        report.skipped_deletes += 1
                        continue
                    await self.records.delete_pulled(
                        db, report.user_id, report.provider, change.local_id
                    )
                else:
                    await self.records.upsert_pulled(
                        db,
                        report.user_id,
                        report.provider,
                        change.local_id,
                        change.record,
                        change.digest,
                    )
                report.pulled_count += 1
            await db.commit()

        logger.info(
            f"Sync job {report.job_id}: applied {report.pulled_count} change(s) "
            f"from {report.provider}"
        )

    # ============== Pushing ==============

    async def _push(self, ctx: _SyncContext) -> None:
        report = ctx.report

        async with self.session_factory() as db:
            candidates = await self.records.push_candidates(
                db, report.user_id, report.provider, ctx.info.push_entity_types
            )
            batch: list[PushRecord] = []
            digests: dict[str, str] = {}
            for local in candidates:
                digest = content_hash(local.fields)
                mapping = await self.records.get_mapping(
                    db, report.user_id, report.provider, local.id
                )
                if mapping is not None and mapping.last_synced_hash == digest:
                    continue
                if local.rejected_hash == digest:
                    continue
                batch.append(
                    PushRecord(
                        local_id=local.id,
                        entity_type=local.entity_type,
                        category=local.category,
                        remote_id=mapping.remote_id if mapping else None,
                        fields=local.fields,
                    )
                )
                digests[local.id] = digest

            deletes: set[str] = set()
            if self.registry.can_push_deletes(report.provider, ctx.mode):
                tombstones = await self.records.delete_candidates(
                    db, report.user_id, report.provider, ctx.info.push_entity_types
                )
                for mapping in tombstones:
                    batch.append(
                        PushRecord(
                            local_id=mapping.local_id,
                            entity_type=mapping.entity_type,
                            remote_id=mapping.remote_id,
                            deleted=True,
                        )
                    )
                    deletes.add(mapping.local_id)

        if not batch:
            logger.debug(f"Sync job {report.job_id}: nothing to push")
            return

        try:
            result = await ctx.client.push_local_changes(ctx.credentials, batch)
        except RemoteUnavailable as e:
            report.push_error = e.describe()
            logger.warning(f"Push to {report.provider} failed: {report.push_error}")
            return
        except RemoteRejected as e:
            # The whole batch was refused at once
            result = PushResult(
                rejected=[RejectedRecord(local_id=item.local_id, error=e.message) for item in batch]
            )

        await self._record_push(report, result, digests, deletes)
        if result.unavailable_error:
            report.push_error = result.unavailable_error

    async def _record_push(
        self,
        report: SyncReport,
        result: PushResult,
        digests: dict[str, str],
        deletes: set[str],
    ) -> None:
        async with self.session_factory() as db:
            for item in result.accepted:
                if item.local_id in deletes:
                    await self.records.delete_mappings(
                        db, report.user_id, report.provider, item.local_id
                    )
                    report.remote_deletes += 1
                    report.pushed_count += 1
                    continue
                local = await self.records.get_record(db, report.user_id, item.local_id)
                if local is None or item.local_id not in digests:
                    continue
                await self.records.mark_pushed(
                    db,
                    report.user_id,
                    report.provider,
                    local,
                    item.remote_id,
                    digests[item.local_id],
                )
                report.pushed_count += 1

            for item in result.rejected:
                if item.local_id in deletes:
                    mapping = await self.records.get_mapping(
                        db, report.user_id, report.provider, item.local_id
                    )
                    if mapping is not None:
                        self.records.mark_delete_rejected(mapping, item.error)
                else:
                    local = await self.records.get_record(db, report.user_id, item.local_id)
                    if local is not None and item.local_id in digests:
                        self.records.mark_rejected(local, item.error, digests[item.local_id])
                report.rejected.append(item)
            await db.commit()

        if result.rejected:
            logger.warning(
                f"{report.provider} rejected {len(result.rejected)} record(s) in job {report.job_id}"
            )

    # ============== Finalizing ==============

    @staticmethod
    def _outcome(report: SyncReport) -> SyncOutcome:
        if report.error:
            return SyncOutcome.FAILED

        failures = bool(report.collection_errors or report.push_error or report.inbox_failed)
        if not failures and not report.rejected:
            return SyncOutcome.SUCCESS
        progress = (
            report.collections_synced
            or report.pushed_count
            or report.rejected
            or report.inbox_processed
        )
        if failures and not progress:
            return SyncOutcome.FAILED
        return SyncOutcome.PARTIAL

    @staticmethod
    def _problems(report: SyncReport) -> Optional[str]:
        if report.error:
            return report.error
        problems = [f"{name}: {err}" for name, err in sorted(report.collection_errors.items())]
        if report.inbox_failed:
            problems.append(f"{report.inbox_failed} inbox payload(s) failed")
        if report.push_error:
            problems.append(f"push: {report.push_error}")
        if report.rejected:
            problems.append(f"{len(report.rejected)} record(s) rejected")
        return "; ".join(problems) or None

    async def _finalize(self, report: SyncReport) -> None:
        error = self._problems(report)
        finalized = await self.ledger.complete(
            report.job_id,
            report.outcome,
            pulled_count=report.pulled_count,
            pushed_count=report.pushed_count,
            summary=report.summary(),
            error_message=error,
            details={
                "trigger": report.trigger.value,
                "direction": report.direction.value,
                "collection_errors": report.collection_errors,
                "rejected": [r.local_id for r in report.rejected],
                "inbox_processed": report.inbox_processed,
                "inbox_failed": report.inbox_failed,
                "remote_deletes": report.remote_deletes,
            },
        )
        if not finalized:
            # Superseded as stale; the newer job owns the config now
            return

        async with self.session_factory() as db:
            await self.integrations.record_outcome(
                db,
                report.user_id,
                report.provider,
                report.outcome,
                error,
                pulled_as_of=report.pulled_as_of,
            )
            await db.commit()
