"""Tests for the reconciliation engine."""

import asyncio
from datetime import datetime

import pytest

from lifesync.core.errors import (
    AlreadyRunning,
    AuthExpired,
    IntegrationNotConnected,
    NotFound,
    RemoteRejected,
    RemoteUnavailable,
    UnknownProvider,
)
from lifesync.models import EntityMapping, LocalRecord, SyncInboxItem, SyncJob
from lifesync.schemas.integration import IntegrationStatus
from lifesync.schemas.sync import (
    InboxStatus,
    RecordUpdate,
    SyncDirection,
    SyncOutcome,
    SyncPhase,
    SyncTrigger,
)
from lifesync.services.reconciliation import ReconciliationEngine
from tests.helpers import (
    USER,
    connect,
    count,
    create_local,
    delete_local,
    enqueue,
    load_records,
    wait_until_fetching,
)


async def status(runtime, provider="eduplanr"):
    async with runtime.session_factory() as db:
        return await runtime.integrations.get_status(db, USER, provider)


async def get_record(runtime, record_id):
    async with runtime.session_factory() as db:
        return await runtime.records.get_record(db, USER, record_id)


async def get_inbox_item(runtime, item_id):
    async with runtime.session_factory() as db:
        return await db.get(SyncInboxItem, item_id)


async def get_mapping(runtime, provider, local_id):
    async with runtime.session_factory() as db:
        return await runtime.records.get_mapping(db, USER, provider, local_id)


def seed_eduplanr(eduplanr):
    eduplanr.put("sessions", "s1", title="Calculus", start_time="2026-01-05T10:00:00")
    eduplanr.put("sessions", "s2", title="Physics", start_time="2026-01-06T10:00:00")
    eduplanr.put("tasks", "t1", entity_type="task", category="task", title="Essay", status="todo")


# ============================================================================
# Pulling and applying
# ============================================================================

class TestPull:
    """Tests for pull, diff and apply."""

    async def test_first_sync_imports_new_records(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pulled_count == 3
        assert report.pushed_count == 0
        assert eduplanr.push_calls == []

        records = await load_records(session_factory)
        assert [r.id for r in records] == [
            "eduplanr-session-s1",
            "eduplanr-session-s2",
            "eduplanr-task-t1",
        ]
        assert {r.source for r in records} == {"eduplanr"}
        assert await count(session_factory, EntityMapping, provider="eduplanr") == 3

        job = await runtime.ledger.get_job(report.job_id)
        assert job.outcome == SyncOutcome.SUCCESS.value
        assert job.pulled_count == 3
        assert job.pushed_count == 0

        view = await status(runtime)
        assert view.status == IntegrationStatus.IDLE
        assert view.last_synced is not None
        assert view.pull_count == 3

    async def test_resync_without_remote_change_writes_nothing(
        self, runtime, eduplanr, session_factory, clock
    ):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        before = {r.id: r.updated_at for r in await load_records(session_factory)}
        clock.advance(60)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pulled_count == 0
        assert report.unchanged_count == 3
        after = {r.id: r.updated_at for r in await load_records(session_factory)}
        assert after == before

    async def test_incremental_pull_passes_last_synced(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        await runtime.engine.reconcile(USER, "eduplanr")
        last_synced = (await status(runtime)).last_synced

        await runtime.engine.reconcile(USER, "eduplanr")

        assert eduplanr.fetch_calls[0][1] is None
        assert eduplanr.fetch_calls[-1][1] == last_synced

    async def test_changed_record_is_updated(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        eduplanr.put("sessions", "s1", title="Calculus II", start_time="2026-01-05T10:00:00")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_count == 1
        assert report.unchanged_count == 2
        record = await get_record(runtime, "eduplanr-session-s1")
        assert record.title == "Calculus II"
        assert await count(session_factory, LocalRecord) == 3

    async def test_remote_wins_when_both_sides_changed(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        async with runtime.session_factory() as db:
            await runtime.records.update_local_record(
                db, "eduplanr-task-t1", RecordUpdate(user_id=USER, title="Essay (local)")
            )
            await db.commit()
        eduplanr.put("tasks", "t1", entity_type="task", category="task", title="Essay (remote)", status="todo")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        record = await get_record(runtime, "eduplanr-task-t1")
        assert record.title == "Essay (remote)"
        assert report.pushed_count == 0


class TestDeletes:
    """Tests for remote deletions per sync mode."""

    async def test_pull_mode_applies_deletes(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "pull")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        eduplanr.put("sessions", "s1", deleted=True)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_count == 1
        assert await get_record(runtime, "eduplanr-session-s1") is None
        assert await count(session_factory, EntityMapping) == 2

    async def test_add_only_never_deletes(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "add-only")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        eduplanr.put("sessions", "s1", deleted=True)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.skipped_deletes == 1
        assert report.pulled_count == 0
        assert await get_record(runtime, "eduplanr-session-s1") is not None

    async def test_add_only_still_applies_updates(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "add-only")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        eduplanr.put("sessions", "s2", title="Physics Lab", start_time="2026-01-06T10:00:00")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_count == 1
        assert (await get_record(runtime, "eduplanr-session-s2")).title == "Physics Lab"

    async def test_delete_of_unknown_record_is_ignored(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.put("sessions", "gone", deleted=True)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_count == 0
        assert await count(session_factory, LocalRecord) == 0


# ============================================================================
# Failures
# ============================================================================

class TestFailures:
    """Tests for partial and failed outcomes."""

    async def test_failing_collection_gives_partial(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        eduplanr.fetch_errors["tasks"] = RemoteUnavailable("tasks endpoint down")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.PARTIAL
        assert report.pulled_count == 2
        assert report.collections_synced == ["sessions"]
        assert report.collection_errors["tasks"].startswith("remote_unavailable")
        assert await count(session_factory, LocalRecord, source="eduplanr") == 2

        view = await status(runtime)
        assert view.status == IntegrationStatus.DEGRADED
        assert view.last_synced is None
        assert "tasks" in view.last_error

    async def test_missing_collection_is_recorded_per_collection(
        self, runtime, eduplanr, session_factory
    ):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        eduplanr.fetch_errors["tasks"] = NotFound("no task list for this account")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.PARTIAL
        assert report.error is None
        assert report.collections_synced == ["sessions"]
        assert report.collection_errors["tasks"] == "not_found: no task list for this account"
        assert await count(session_factory, LocalRecord, source="eduplanr") == 2
        assert (await status(runtime)).status == IntegrationStatus.DEGRADED

    async def test_every_collection_failing_gives_failed(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.fetch_errors["sessions"] = RemoteUnavailable("down")
        eduplanr.fetch_errors["tasks"] = RemoteRejected("bad request")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.FAILED
        assert (await status(runtime)).status == IntegrationStatus.ERROR

    async def test_auth_expired_aborts_job(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        eduplanr.fetch_errors["sessions"] = AuthExpired("token revoked")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.FAILED
        assert report.error == "auth_expired: token revoked"
        assert [c for c, _ in eduplanr.fetch_calls] == ["sessions"]
        assert await count(session_factory, LocalRecord) == 0

        view = await status(runtime)
        assert view.status == IntegrationStatus.ERROR
        assert view.last_error == "auth_expired: token revoked"

    async def test_unexpected_error_never_leaves_syncing(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.fetch_errors["sessions"] = ValueError("boom")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.FAILED
        assert report.error == "ValueError: boom"
        assert (await status(runtime)).status == IntegrationStatus.ERROR
        assert await runtime.ledger.get_active(USER, "eduplanr") is None
        assert runtime.engine.phase(USER, "eduplanr") == SyncPhase.IDLE

    async def test_wall_clock_ceiling(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.gate = asyncio.Event()
        engine = ReconciliationEngine(
            session_factory,
            runtime.ledger,
            runtime.clients,
            registry=runtime.registry,
            integrations=runtime.integrations,
            records=runtime.records,
            clock=runtime.clock,
            sync_timeout=0.05,
        )

        report = await engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.FAILED
        assert report.error.startswith("timeout:")
        assert await runtime.ledger.get_active(USER, "eduplanr") is None
        assert (await status(runtime)).status == IntegrationStatus.ERROR


# ============================================================================
# Pushing
# ============================================================================

class TestPush:
    """Tests for the push step."""

    async def test_user_record_is_pushed_once(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        local = await create_local(runtime, "Read chapter 4", status="todo")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pushed_count == 1
        assert [r.local_id for r in eduplanr.pushed] == [local.id]
        assert (await get_record(runtime, local.id)).external_id == "remote-1"

        again = await runtime.engine.reconcile(USER, "eduplanr")

        assert again.pushed_count == 0
        assert len(eduplanr.push_calls) == 1

    async def test_pushed_record_pulled_back_is_not_duplicated(
        self, runtime, eduplanr, session_factory
    ):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.echo_collection = "tasks"
        eduplanr.echo_category = "task"
        await create_local(runtime, "Read chapter 4", status="todo")
        await runtime.engine.reconcile(USER, "eduplanr")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.unchanged_count == 1
        assert report.pulled_count == 0
        assert await count(session_factory, LocalRecord) == 1

    async def test_record_not_marked_for_push_stays_local(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        await create_local(runtime, "Private note", push_eligible=False)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pushed_count == 0
        assert eduplanr.push_calls == []

    async def test_local_edit_of_imported_record_is_pushed(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        async with runtime.session_factory() as db:
            await runtime.records.update_local_record(
                db, "eduplanr-task-t1", RecordUpdate(user_id=USER, fields={"status": "done"})
            )
            await db.commit()

        report = await runtime.engine.reconcile(USER, "eduplanr", direction=SyncDirection.PUSH)

        assert report.pushed_count == 1
        pushed = eduplanr.pushed[0]
        assert pushed.local_id == "eduplanr-task-t1"
        assert pushed.remote_id == "t1"
        assert pushed.fields["status"] == "done"

    async def test_add_only_provider_is_never_pushed(self, runtime, google, session_factory):
        await connect(runtime, "googleCalendar")
        google.put("events", "g1", category="event", title="Standup")
        await create_local(runtime, "Dentist", entity_type="calendarEvent")

        report = await runtime.engine.reconcile(USER, "googleCalendar")

        assert google.push_calls == []
        assert report.push_skipped
        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pulled_count == 1
        assert report.pushed_count == 0

    async def test_push_only_request_on_add_only_does_nothing(self, runtime, google, session_factory):
        await connect(runtime, "googleCalendar")

        report = await runtime.engine.reconcile(
            USER, "googleCalendar", SyncTrigger.LOCAL_CHANGE, SyncDirection.PUSH
        )

        assert report is None
        assert await count(session_factory, SyncJob) == 0
        assert google.fetch_calls == []

    async def test_pull_direction_skips_push(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        await create_local(runtime, "Read chapter 4")

        report = await runtime.engine.reconcile(USER, "eduplanr", direction=SyncDirection.PULL)

        assert report.push_skipped
        assert eduplanr.push_calls == []

    async def test_push_direction_skips_pull(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await create_local(runtime, "Read chapter 4")

        report = await runtime.engine.reconcile(USER, "eduplanr", direction=SyncDirection.PUSH)

        assert eduplanr.fetch_calls == []
        assert report.pushed_count == 1
        assert report.pulled_count == 0

    async def test_rejected_record_keeps_error_and_is_not_retried(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.reject_titles = {"x": "title too short"}
        local = await create_local(runtime, "x")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.PARTIAL
        assert [r.local_id for r in report.rejected] == [local.id]
        assert (await get_record(runtime, local.id)).last_error == "title too short"

        await runtime.engine.reconcile(USER, "eduplanr")
        assert len(eduplanr.push_calls) == 1

    async def test_rejected_record_is_retried_after_edit(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.reject_titles = {"x": "title too short"}
        local = await create_local(runtime, "x")
        await runtime.engine.reconcile(USER, "eduplanr")
        async with runtime.session_factory() as db:
            await runtime.records.update_local_record(
                db, local.id, RecordUpdate(user_id=USER, title="Read chapter 4")
            )
            await db.commit()

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pushed_count == 1
        assert (await get_record(runtime, local.id)).last_error is None

    async def test_batch_rejection_marks_every_record(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.push_exception = RemoteRejected("schema mismatch")
        await create_local(runtime, "One")
        await create_local(runtime, "Two")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.PARTIAL
        assert len(report.rejected) == 2
        assert {r.error for r in report.rejected} == {"schema mismatch"}

    async def test_unavailable_push_is_retried_next_pass(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.push_exception = RemoteUnavailable("maintenance")
        await create_local(runtime, "Read chapter 4")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.PARTIAL
        assert report.push_error.startswith("remote_unavailable")

        eduplanr.push_exception = None
        retry = await runtime.engine.reconcile(USER, "eduplanr")

        assert retry.outcome == SyncOutcome.SUCCESS
        assert retry.pushed_count == 1


# ============================================================================
# Guards
# ============================================================================

class TestGuards:
    """Tests for the checks made before a job is opened."""

    async def test_not_connected(self, runtime):
        with pytest.raises(IntegrationNotConnected):
            await runtime.engine.reconcile(USER, "eduplanr")

    async def test_sync_disabled(self, runtime):
        await connect(runtime, "eduplanr")
        async with runtime.session_factory() as db:
            await runtime.integrations.set_sync_enabled(db, USER, "eduplanr", False)
            await db.commit()

        with pytest.raises(IntegrationNotConnected):
            await runtime.engine.reconcile(USER, "eduplanr")

    async def test_unknown_provider(self, runtime):
        with pytest.raises(UnknownProvider):
            await runtime.engine.reconcile(USER, "myspace")

    async def test_rest_provider_with_missing_client(self, runtime, session_factory):
        await connect(runtime, "googleCalendar")
        engine = ReconciliationEngine(
            session_factory,
            runtime.ledger,
            {},
            registry=runtime.registry,
            integrations=runtime.integrations,
            records=runtime.records,
            clock=runtime.clock,
        )

        with pytest.raises(UnknownProvider):
            await engine.reconcile(USER, "googleCalendar")
        assert await count(session_factory, SyncJob) == 0

    async def test_concurrent_trigger_is_rejected(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.gate = asyncio.Event()

        first = asyncio.create_task(runtime.engine.reconcile(USER, "eduplanr"))
        await wait_until_fetching(eduplanr)
        assert runtime.engine.phase(USER, "eduplanr") == SyncPhase.PULLING
        assert (await status(runtime)).status == IntegrationStatus.SYNCING

        with pytest.raises(AlreadyRunning):
            await runtime.engine.reconcile(
                USER, "eduplanr", SyncTrigger.LOCAL_CHANGE, SyncDirection.PUSH
            )

        eduplanr.gate.set()
        report = await first

        assert report.outcome == SyncOutcome.SUCCESS
        assert await count(session_factory, SyncJob) == 1
        assert runtime.engine.phase(USER, "eduplanr") == SyncPhase.IDLE


# ============================================================================
# Incremental cursor
# ============================================================================

class TestCursor:
    """Tests for how ``last_synced`` moves between runs."""

    async def test_push_only_run_keeps_cursor(self, runtime, eduplanr, clock):
        await connect(runtime, "eduplanr", "two-way")
        await runtime.engine.reconcile(USER, "eduplanr")
        clock.advance(100)
        await create_local(runtime, "Read chapter 4")

        pushed = await runtime.engine.reconcile(
            USER, "eduplanr", SyncTrigger.LOCAL_CHANGE, SyncDirection.PUSH
        )
        assert pushed.outcome == SyncOutcome.SUCCESS
        assert (await status(runtime)).last_synced == datetime(2026, 1, 5, 9, 0)

        eduplanr.fetch_calls.clear()
        await runtime.engine.reconcile(USER, "eduplanr")

        assert {since for _, since in eduplanr.fetch_calls} == {datetime(2026, 1, 5, 9, 0)}

    async def test_cursor_is_earliest_server_time_of_the_pull(self, runtime, eduplanr, clock):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.collection_as_of = {
            "sessions": datetime(2026, 1, 5, 9, 0, 30),
            "tasks": datetime(2026, 1, 5, 9, 0, 10),
        }
        clock.advance(300)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_as_of == datetime(2026, 1, 5, 9, 0, 10)
        assert (await status(runtime)).last_synced == datetime(2026, 1, 5, 9, 0, 10)

    async def test_partial_run_keeps_previous_cursor(self, runtime, eduplanr, clock):
        await connect(runtime, "eduplanr", "two-way")
        await runtime.engine.reconcile(USER, "eduplanr")
        eduplanr.as_of = datetime(2026, 1, 5, 9, 10)
        eduplanr.fetch_errors["tasks"] = RemoteUnavailable("down")
        clock.advance(600)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.PARTIAL
        assert (await status(runtime)).last_synced == datetime(2026, 1, 5, 9, 0)


# ============================================================================
# Phase tracking
# ============================================================================

class TestPhases:
    """Tests for the in-memory phase map."""

    async def test_finished_runs_leave_no_phase_entry(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        await runtime.engine.reconcile(USER, "eduplanr")
        assert runtime.engine._phases == {}

        eduplanr.fetch_errors["sessions"] = AuthExpired("token revoked")
        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.FAILED
        assert runtime.engine._phases == {}
        assert runtime.engine.phase(USER, "eduplanr") == SyncPhase.IDLE

    async def test_many_users_do_not_accumulate(self, runtime):
        for n in range(5):
            await connect(runtime, "eduplanr", "two-way", user_id=f"user-{n + 10}")
            await runtime.engine.reconcile(f"user-{n + 10}", "eduplanr")

        assert runtime.engine._phases == {}


# ============================================================================
# Sync inbox
# ============================================================================

class TestInbox:
    """Tests for draining provider payloads delivered to the inbox."""

    async def test_inbox_only_provider_imports_payloads(self, runtime, clock, session_factory):
        await connect(runtime, "fitbit")
        item = await enqueue(
            runtime,
            "fitbit",
            "wellnessSnapshot",
            {"externalId": "day-1", "title": "Sleep", "hours": 7.5},
        )

        report = await runtime.engine.reconcile(USER, "fitbit")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pulled_count == 1
        assert report.inbox_processed == 1
        assert report.push_skipped

        record = await get_record(runtime, "fitbit-wellness-day-1")
        assert record.source == "fitbit"
        assert record.fields == {"title": "Sleep", "hours": 7.5}

        settled = await get_inbox_item(runtime, item.id)
        assert settled.status == InboxStatus.PROCESSED.value
        assert settled.job_id == report.job_id
        assert (await status(runtime, "fitbit")).last_synced == clock.now()

    async def test_same_checksum_is_not_applied_twice(self, runtime, clock):
        await connect(runtime, "fitbit")
        payload = {"externalId": "day-1", "title": "Sleep", "hours": 7.5}
        await enqueue(runtime, "fitbit", "wellnessSnapshot", payload, checksum="c-1")
        await runtime.engine.reconcile(USER, "fitbit")
        before = (await get_record(runtime, "fitbit-wellness-day-1")).updated_at
        clock.advance(60)

        # Same source data re-exported with a new timestamp
        resent = dict(payload, exportedAt="2026-01-05T09:01:00")
        await enqueue(runtime, "fitbit", "wellnessSnapshot", resent, checksum="c-1")
        report = await runtime.engine.reconcile(USER, "fitbit")

        assert report.pulled_count == 0
        assert report.unchanged_count == 1
        assert report.inbox_processed == 1
        assert (await get_record(runtime, "fitbit-wellness-day-1")).updated_at == before

    async def test_latest_payload_for_a_record_wins(self, runtime, clock, session_factory):
        await connect(runtime, "fitbit")
        await enqueue(runtime, "fitbit", "wellnessSnapshot", {"externalId": "day-1", "title": "Draft"})
        clock.advance(1)
        await enqueue(runtime, "fitbit", "wellnessSnapshot", {"externalId": "day-1", "title": "Final"})

        report = await runtime.engine.reconcile(USER, "fitbit")

        assert report.pulled_count == 1
        assert report.inbox_processed == 2
        assert (await get_record(runtime, "fitbit-wellness-day-1")).title == "Final"
        assert await count(session_factory, LocalRecord) == 1

    async def test_unsupported_payload_fails_alone(self, runtime, session_factory):
        await connect(runtime, "fitbit")
        bad = await enqueue(runtime, "fitbit", "contact", {"externalId": "c1", "name": "Ada"})
        good = await enqueue(runtime, "fitbit", "wellnessSnapshot", {"externalId": "day-1"})

        report = await runtime.engine.reconcile(USER, "fitbit")

        assert report.outcome == SyncOutcome.PARTIAL
        assert report.inbox_failed == 1
        assert report.inbox_processed == 1
        failed = await get_inbox_item(runtime, bad.id)
        assert failed.status == InboxStatus.FAILED.value
        assert "unsupported entity type 'contact'" in failed.error
        assert (await get_inbox_item(runtime, good.id)).status == InboxStatus.PROCESSED.value

        logs = await runtime.ledger.list_logs(USER, "fitbit")
        assert any(bad.id in log.message for log in logs)
        assert (await status(runtime, "fitbit")).status == IntegrationStatus.DEGRADED

    async def test_only_unsupported_payloads_fail_the_job(self, runtime):
        await connect(runtime, "fitbit")
        await enqueue(runtime, "fitbit", "contact", {"externalId": "c1"})

        report = await runtime.engine.reconcile(USER, "fitbit")

        assert report.outcome == SyncOutcome.FAILED
        assert (await status(runtime, "fitbit")).last_synced is None

    async def test_inbox_delete_removes_record(self, runtime, clock):
        await connect(runtime, "fitbit", "pull")
        await enqueue(runtime, "fitbit", "wellnessSnapshot", {"externalId": "day-1", "title": "Sleep"})
        await runtime.engine.reconcile(USER, "fitbit")
        clock.advance(1)
        await enqueue(runtime, "fitbit", "wellnessSnapshot", {}, external_id="day-1", deleted=True)

        report = await runtime.engine.reconcile(USER, "fitbit")

        assert report.pulled_count == 1
        assert await get_record(runtime, "fitbit-wellness-day-1") is None

    async def test_inbox_drained_alongside_rest_pull(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await enqueue(runtime, "eduplanr", "task", {"externalId": "t9", "title": "Lab report"})

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pulled_count == 4
        assert report.inbox_processed == 1
        assert (await get_record(runtime, "eduplanr-task-t9")).title == "Lab report"

    async def test_push_only_run_leaves_inbox_pending(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        await create_local(runtime, "Read chapter 4")
        item = await enqueue(runtime, "eduplanr", "task", {"externalId": "t9", "title": "Lab report"})

        report = await runtime.engine.reconcile(USER, "eduplanr", direction=SyncDirection.PUSH)

        assert report.inbox_processed == 0
        assert (await get_inbox_item(runtime, item.id)).status == InboxStatus.PENDING.value

    async def test_failed_job_leaves_payloads_pending(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        eduplanr.fetch_errors["sessions"] = AuthExpired("token revoked")
        item = await enqueue(runtime, "eduplanr", "task", {"externalId": "t9"})

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.FAILED
        assert (await get_inbox_item(runtime, item.id)).status == InboxStatus.PENDING.value

    async def test_checksummed_inbox_import_is_not_pushed_back(self, runtime, eduplanr):
        await connect(runtime, "eduplanr", "two-way")
        await enqueue(
            runtime, "eduplanr", "task", {"externalId": "t9", "title": "Lab report"}, checksum="c-9"
        )

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_count == 1
        assert report.pushed_count == 0
        assert eduplanr.push_calls == []


# ============================================================================
# Local deletes
# ============================================================================

class TestLocalDeletes:
    """Tests for tombstones left by local deletes."""

    async def test_deleted_import_is_not_reimported(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        assert await delete_local(runtime, "eduplanr-task-t1")

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.pulled_count == 0
        assert await get_record(runtime, "eduplanr-task-t1") is None
        assert (await get_mapping(runtime, "eduplanr", "eduplanr-task-t1")).deleted_at is not None
        # EduPlanr does not take deletes
        assert not any(record.deleted for record in eduplanr.pushed)

    async def test_remote_delete_clears_tombstone(self, runtime, eduplanr, session_factory):
        await connect(runtime, "eduplanr", "two-way")
        seed_eduplanr(eduplanr)
        await runtime.engine.reconcile(USER, "eduplanr")
        await delete_local(runtime, "eduplanr-task-t1")
        eduplanr.put("tasks", "t1", entity_type="task", category="task", deleted=True)

        report = await runtime.engine.reconcile(USER, "eduplanr")

        assert report.pulled_count == 0
        assert await get_mapping(runtime, "eduplanr", "eduplanr-task-t1") is None
        assert await count(session_factory, EntityMapping) == 2

    async def test_two_way_calendar_delete_is_pushed(self, runtime, google, session_factory):
        await connect(runtime, "googleCalendar", "two-way")
        google.put("events", "g1", category="event", title="Standup")
        await runtime.engine.reconcile(USER, "googleCalendar")
        await delete_local(runtime, "googleCalendar-event-g1")

        report = await runtime.engine.reconcile(
            USER, "googleCalendar", SyncTrigger.LOCAL_CHANGE, SyncDirection.PUSH
        )

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.remote_deletes == 1
        assert report.pushed_count == 1
        [pushed] = google.pushed
        assert pushed.deleted
        assert pushed.remote_id == "g1"
        assert google.remote["events"] == {}
        assert await count(session_factory, EntityMapping) == 0

        again = await runtime.engine.reconcile(USER, "googleCalendar")
        assert again.pushed_count == 0
        assert len(google.push_calls) == 1

    async def test_rejected_delete_is_not_retried(self, runtime, google):
        await connect(runtime, "googleCalendar", "two-way")
        google.put("events", "g1", category="event", title="Standup")
        await runtime.engine.reconcile(USER, "googleCalendar")
        await delete_local(runtime, "googleCalendar-event-g1")
        google.push_exception = RemoteRejected("event is read-only")

        report = await runtime.engine.reconcile(USER, "googleCalendar")

        assert report.outcome == SyncOutcome.PARTIAL
        assert [r.local_id for r in report.rejected] == ["googleCalendar-event-g1"]
        mapping = await get_mapping(runtime, "googleCalendar", "googleCalendar-event-g1")
        assert mapping.delete_error == "event is read-only"

        google.push_exception = None
        again = await runtime.engine.reconcile(USER, "googleCalendar")

        assert again.pulled_count == 0
        assert len(google.push_calls) == 1
        assert await get_record(runtime, "googleCalendar-event-g1") is None

    async def test_add_only_calendar_keeps_tombstone(self, runtime, google):
        await connect(runtime, "googleCalendar")
        google.put("events", "g1", category="event", title="Standup")
        await runtime.engine.reconcile(USER, "googleCalendar")
        await delete_local(runtime, "googleCalendar-event-g1")

        report = await runtime.engine.reconcile(USER, "googleCalendar")

        assert report.pulled_count == 0
        assert google.push_calls == []
        assert await get_record(runtime, "googleCalendar-event-g1") is None
