"""
Tests for ReconciliationService: batch reconciliation and single-record repair.

Runs against a real (SQLite) off-chain store and the in-memory ledger.
"""

from uuid import uuid4

import pytest

from campaign_engines.reconciliation.domain import Classification
from campaign_kernel.domain.dtos import SubmissionStatus
from campaign_kernel.exceptions import (
    AmbiguousCampaignError,
    CampaignNotFoundError,
    InactiveCampaignError,
    MissingJoinKeyError,
    SubmissionNotFoundError,
)
from campaign_kernel.models.audit_event import AuditAction
from campaign_kernel.services.auditor_service import AuditRecord, AuditSink
from campaign_services.reconciliation_service import SYSTEM_ACTOR, ReconciliationService
from tests.conftest import CONTRACT, OTHER_CONTRACT, TEST_ACTOR


@pytest.fixture
def service(session_factory, deterministic_clock):
    return ReconciliationService(session_factory, clock=deterministic_clock)


def _fill(ledger, count: int) -> None:
    for i in range(count):
        ledger.add_campaign(f"ipfs://filler-{i}")


# =============================================================================
# Batch reconciliation
# =============================================================================


class TestRunReconciliation:

    def test_orphan_is_never_written(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        """Stored id points at a campaign with another URI and nothing matches."""
        _fill(fake_ledger, 4)
        sid = create_submission(campaign_id=3, metadata_uri="ipfs://gone")

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.orphan == 1
        assert report.results[0].classification == Classification.ORPHAN
        assert read_submission(sid).campaign_id == 3
        assert audit_events(sid) == []

    def test_mismatch_is_fixed_with_one_audit_event(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        _fill(fake_ledger, 2)
        target = fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(
            campaign_id=0, metadata_uri="ipfs://x", contract_address=OTHER_CONTRACT
        )

        report = service.run_reconciliation(ledger_ctx, actor=TEST_ACTOR)

        assert report.summary.fixed == 1
        result = report.results[0]
        assert result.classification == Classification.FIXED
        assert result.previous_campaign_id == 0
        assert result.resolved_campaign_id == target.campaign_id

        stored = read_submission(sid)
        assert stored.campaign_id == target.campaign_id
        assert stored.contract_address == CONTRACT
        assert stored.status == SubmissionStatus.MINTED

        events = audit_events(sid)
        assert len(events) == 1
        assert events[0].action == AuditAction.CAMPAIGN_REPAIRED.value
        assert events[0].actor == TEST_ACTOR
        assert events[0].payload["old_campaign_id"] == 0
        assert events[0].payload["new_campaign_id"] == target.campaign_id
        assert events[0].payload["mode"] == "batch"

    def test_null_campaign_id_is_backfilled(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission
    ):
        campaign = fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://x")

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.fixed == 1
        assert read_submission(sid).campaign_id == campaign.campaign_id

    def test_second_run_is_idempotent(
        self, service, ledger_ctx, fake_ledger, create_submission, audit_events
    ):
        _fill(fake_ledger, 1)
        fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(campaign_id=0, metadata_uri="ipfs://x")

        first = service.run_reconciliation(ledger_ctx)
        second = service.run_reconciliation(ledger_ctx)

        assert first.summary.fixed == 1
        assert second.summary.fixed == 0
        assert second.summary.valid == 1
        assert len(audit_events(sid)) == 1

    def test_collision_is_reported_not_repaired(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        fake_ledger.add_campaign("ipfs://dup")
        fake_ledger.add_campaign("ipfs://dup")
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://dup")

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.collision == 1
        assert report.results[0].candidates == (0, 1)
        assert dict(report.collisions) == {"ipfs://dup": (0, 1)}
        assert read_submission(sid).campaign_id is None
        assert audit_events(sid) == []

    def test_only_minted_submissions_are_classified(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission
    ):
        fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(
            status=SubmissionStatus.CLOSED, campaign_id=None, metadata_uri="ipfs://x"
        )

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.total == 0
        assert read_submission(sid).campaign_id is None

    def test_missing_join_key_is_error_result(self, service, ledger_ctx, create_submission):
        create_submission(campaign_id=1, metadata_uri=None)

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.error == 1

    def test_batch_does_not_check_active_flag(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission
    ):
        campaign = fake_ledger.add_campaign("ipfs://x", active=False, closed=True)
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://x")

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.fixed == 1
        assert read_submission(sid).campaign_id == campaign.campaign_id

    def test_unreadable_campaign_is_skipped_and_reported(
        self, service, ledger_ctx, fake_ledger, create_submission
    ):
        fake_ledger.add_campaign("ipfs://a")
        fake_ledger.add_campaign("ipfs://b")
        fake_ledger.fail_reads(1)
        create_submission(campaign_id=0, metadata_uri="ipfs://a")
        create_submission(campaign_id=1, metadata_uri="ipfs://b")

        report = service.run_reconciliation(ledger_ctx)

        assert report.skipped_ids == (1,)
        assert report.summary.valid == 1
        assert report.summary.orphan == 1
        assert fake_ledger.read_calls[1] == ledger_ctx.retry.max_attempts
        orphan = report.results_by_classification(Classification.ORPHAN)[0]
        assert "stored campaign 1 could not be read" in orphan.detail

    def test_unreadable_count_is_reported_not_raised(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://x")
        fake_ledger.fail_count(10)

        report = service.run_reconciliation(ledger_ctx)

        assert fake_ledger.count_calls == ledger_ctx.retry.max_attempts
        assert report.results == ()
        assert report.summary.total == 0
        assert "get_campaign_count" in report.error
        assert report.to_dict()["error"] == report.error
        assert read_submission(sid).campaign_id is None
        assert audit_events(sid) == []

    def test_failed_record_does_not_stop_the_run(
        self, session_factory, deterministic_clock, ledger_ctx, fake_ledger, create_submission
    ):
        class FailingSink(AuditSink):
            calls = 0

            def append(self, record: AuditRecord) -> None:
                FailingSink.calls += 1
                if FailingSink.calls == 1:
                    raise AmbiguousCampaignError("x", "ipfs://x", (0,))

        service = ReconciliationService(
            session_factory,
            clock=deterministic_clock,
            audit_sink_factory=lambda session: FailingSink(),
        )
        fake_ledger.add_campaign("ipfs://a")
        fake_ledger.add_campaign("ipfs://b")
        create_submission(title="first", campaign_id=None, metadata_uri="ipfs://a")
        create_submission(title="second", campaign_id=None, metadata_uri="ipfs://b")

        report = service.run_reconciliation(ledger_ctx)

        assert report.summary.total == 2
        assert report.summary.error == 1
        assert report.summary.fixed == 1

    def test_completion_is_logged_with_counts(
        self, service, ledger_ctx, fake_ledger, create_submission, captured_logs
    ):
        fake_ledger.add_campaign("ipfs://a")
        create_submission(campaign_id=0, metadata_uri="ipfs://a")

        service.run_reconciliation(ledger_ctx)

        completed = [r for r in captured_logs() if r["message"] == "reconciliation_completed"]
        assert len(completed) == 1
        assert completed[0]["valid"] == 1
        assert completed[0]["actor"] == SYSTEM_ACTOR
        assert "run_id" in completed[0]

    def test_batch_gateway_reads_in_chunks(
        self, session_factory, deterministic_clock, batch_ledger, create_submission
    ):
        from tests.conftest import make_ledger_ctx

        for i in range(25):
            batch_ledger.add_campaign(f"ipfs://c{i}")
        create_submission(campaign_id=24, metadata_uri="ipfs://c24")
        ctx = make_ledger_ctx(batch_ledger, batch_size=10)
        service = ReconciliationService(session_factory, clock=deterministic_clock)

        report = service.run_reconciliation(ctx)

        assert batch_ledger.batch_calls == 3
        assert report.on_chain_campaigns == 25
        assert report.summary.valid == 1


# =============================================================================
# Single-record repair
# =============================================================================


class TestRepairSingle:

    def test_links_null_campaign_id_then_reconciles_valid(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        _fill(fake_ledger, 7)
        campaign = fake_ledger.add_campaign("ipfs://X")
        assert campaign.campaign_id == 7
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://X")

        outcome = service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)

        assert outcome.to_dict()["oldCampaignId"] is None
        assert outcome.to_dict()["newCampaignId"] == 7
        assert not outcome.already_linked
        assert read_submission(sid).campaign_id == 7
        assert len(audit_events(sid)) == 1

        report = service.run_reconciliation(ledger_ctx)
        assert report.results[0].classification == Classification.VALID

    def test_already_linked_writes_nothing(
        self, service, ledger_ctx, fake_ledger, create_submission, audit_events
    ):
        fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(campaign_id=0, metadata_uri="ipfs://x")

        outcome = service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)

        assert outcome.already_linked
        assert outcome.new_campaign_id == 0
        assert audit_events(sid) == []

    def test_approved_submission_is_promoted_to_minted(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(
            status=SubmissionStatus.APPROVED,
            campaign_id=None,
            metadata_uri="ipfs://x",
            visible_on_marketplace=False,
        )

        outcome = service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)

        stored = read_submission(sid)
        assert stored.status == SubmissionStatus.MINTED
        assert stored.visible_on_marketplace is True
        assert outcome.previous_status == "approved"
        assert outcome.new_status == "minted"
        events = audit_events(sid)
        assert events[0].previous_state == "approved"
        assert events[0].new_state == "minted"

    def test_inactive_target_is_refused(
        self, service, ledger_ctx, fake_ledger, create_submission, read_submission, audit_events
    ):
        fake_ledger.add_campaign("ipfs://x", active=False, closed=True)
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://x")

        with pytest.raises(InactiveCampaignError):
            service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)

        assert read_submission(sid).campaign_id is None
        assert audit_events(sid) == []

    def test_ambiguous_target_is_refused(self, service, ledger_ctx, fake_ledger, create_submission):
        fake_ledger.add_campaign("ipfs://x")
        fake_ledger.add_campaign("ipfs://x")
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://x")

        with pytest.raises(AmbiguousCampaignError) as exc_info:
            service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)
        assert exc_info.value.candidates == (0, 1)

    def test_no_match(self, service, ledger_ctx, fake_ledger, create_submission):
        _fill(fake_ledger, 3)
        sid = create_submission(campaign_id=None, metadata_uri="ipfs://nowhere")

        with pytest.raises(CampaignNotFoundError) as exc_info:
            service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)
        assert exc_info.value.searched == 3

    def test_missing_join_key_checked_before_ledger(
        self, service, ledger_ctx, fake_ledger, create_submission
    ):
        sid = create_submission(campaign_id=None, metadata_uri=None)

        with pytest.raises(MissingJoinKeyError):
            service.repair_single(ledger_ctx, sid, actor=TEST_ACTOR)
        assert fake_ledger.count_calls == 0

    def test_unknown_submission(self, service, ledger_ctx):
        with pytest.raises(SubmissionNotFoundError):
            service.repair_single(ledger_ctx, uuid4(), actor=TEST_ACTOR)
