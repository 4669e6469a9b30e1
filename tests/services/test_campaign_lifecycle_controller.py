"""
Tests for CampaignLifecycleController.

Covers close (fail-closed), deactivate, reactivate, request validation and
the one-audit-event-per-transition rule.
"""

from uuid import uuid4

import pytest

from campaign_kernel.domain.dtos import LifecycleAction, SubmissionStatus
from campaign_kernel.exceptions import (
    InputError,
    InvalidActionError,
    LedgerWriteError,
    MissingCampaignIdError,
    SubmissionNotFoundError,
)
from campaign_kernel.models.audit_event import AuditAction
from campaign_services.lifecycle_controller import (
    ON_CHAIN_STILL_CLOSED,
    CampaignLifecycleController,
    parse_action,
)
from tests.conftest import TEST_ACTOR


@pytest.fixture
def controller(session_factory, deterministic_clock):
    return CampaignLifecycleController(session_factory, clock=deterministic_clock)


@pytest.fixture
def minted(fake_ledger, create_submission):
    """A minted submission linked to an active on-chain campaign."""
    for i in range(7):
        fake_ledger.add_campaign(f"ipfs://filler-{i}")
    campaign = fake_ledger.add_campaign("ipfs://x")
    return create_submission(campaign_id=campaign.campaign_id, metadata_uri="ipfs://x")


# =============================================================================
# Close
# =============================================================================


class TestClose:

    def test_confirmed_close_updates_status_and_audits_tx(
        self, controller, ledger_ctx, fake_ledger, minted, read_submission, audit_events
    ):
        result = controller.execute(ledger_ctx, minted, "close", actor=TEST_ACTOR, reason="ended")

        assert result.new_status == SubmissionStatus.CLOSED
        assert result.previous_status == SubmissionStatus.MINTED
        assert result.tx_id == "0xtx1"
        assert fake_ledger.close_calls == [7]
        assert fake_ledger.campaigns[7].closed
        assert read_submission(minted).status == SubmissionStatus.CLOSED

        events = audit_events(minted)
        assert len(events) == 1
        assert events[0].action == AuditAction.CAMPAIGN_CLOSED.value
        assert events[0].tx_id == "0xtx1"
        assert events[0].reason == "ended"
        assert events[0].previous_state == "minted"
        assert events[0].new_state == "closed"

    def test_rejected_close_leaves_submission_untouched(
        self, controller, ledger_ctx, fake_ledger, minted, read_submission, audit_events
    ):
        fake_ledger.close_outcome = "rejected"

        with pytest.raises(LedgerWriteError):
            controller.execute(ledger_ctx, minted, "close", actor=TEST_ACTOR)

        assert read_submission(minted).status == SubmissionStatus.MINTED
        assert audit_events(minted) == []

    def test_reverted_close_carries_tx_id(
        self, controller, ledger_ctx, fake_ledger, minted, read_submission
    ):
        fake_ledger.close_outcome = "reverted"

        with pytest.raises(LedgerWriteError) as exc_info:
            controller.execute(ledger_ctx, minted, "close", actor=TEST_ACTOR)

        assert exc_info.value.tx_id == "0xtx1"
        assert read_submission(minted).status == SubmissionStatus.MINTED

    def test_unconfirmed_close_is_a_failure(
        self, controller, ledger_ctx, fake_ledger, minted, read_submission, audit_events
    ):
        fake_ledger.close_outcome = "unconfirmed"

        with pytest.raises(LedgerWriteError) as exc_info:
            controller.execute(ledger_ctx, minted, "close", actor=TEST_ACTOR)

        assert exc_info.value.tx_id == "0xtx1"
        assert "not confirmed" in exc_info.value.reason
        assert read_submission(minted).status == SubmissionStatus.MINTED
        assert audit_events(minted) == []

    def test_close_without_campaign_id_never_touches_ledger(
        self, controller, ledger_ctx, fake_ledger, create_submission, read_submission
    ):
        sid = create_submission(
            status=SubmissionStatus.APPROVED, campaign_id=None, metadata_uri="ipfs://x"
        )

        with pytest.raises(MissingCampaignIdError):
            controller.execute(ledger_ctx, sid, "close", actor=TEST_ACTOR)

        assert fake_ledger.close_calls == []
        assert read_submission(sid).status == SubmissionStatus.APPROVED


# =============================================================================
# Deactivate / reactivate
# =============================================================================


class TestDeactivateReactivate:

    def test_deactivate_is_off_chain_only(
        self, controller, ledger_ctx, fake_ledger, minted, read_submission, audit_events
    ):
        result = controller.execute(ledger_ctx, minted, "deactivate", actor=TEST_ACTOR)

        assert result.new_status == SubmissionStatus.DEACTIVATED
        assert result.tx_id is None
        assert fake_ledger.close_calls == []
        assert read_submission(minted).status == SubmissionStatus.DEACTIVATED
        events = audit_events(minted)
        assert [e.action for e in events] == [AuditAction.CAMPAIGN_DEACTIVATED.value]

    def test_reactivate_deactivated_with_campaign_id(
        self, controller, ledger_ctx, minted, read_submission
    ):
        controller.execute(ledger_ctx, minted, "deactivate", actor=TEST_ACTOR)

        result = controller.execute(ledger_ctx, minted, "reactivate", actor=TEST_ACTOR)

        assert result.new_status == SubmissionStatus.MINTED
        assert result.warnings == ()
        assert read_submission(minted).status == SubmissionStatus.MINTED

    def test_reactivate_without_campaign_id_returns_to_approved(
        self, controller, ledger_ctx, create_submission, read_submission
    ):
        sid = create_submission(status=SubmissionStatus.DEACTIVATED, campaign_id=None)

        result = controller.execute(ledger_ctx, sid, "reactivate", actor=TEST_ACTOR)

        assert result.new_status == SubmissionStatus.APPROVED
        assert read_submission(sid).status == SubmissionStatus.APPROVED

    def test_reactivate_after_close_warns_on_chain_still_closed(
        self, controller, ledger_ctx, fake_ledger, minted, read_submission, audit_events,
        deterministic_clock,
    ):
        controller.execute(ledger_ctx, minted, "close", actor=TEST_ACTOR)
        deterministic_clock.advance(60)

        result = controller.execute(ledger_ctx, minted, "reactivate", actor=TEST_ACTOR)

        assert result.new_status == SubmissionStatus.MINTED
        assert result.warning_codes == (ON_CHAIN_STILL_CLOSED,)
        assert result.to_dict()["warnings"][0]["code"] == ON_CHAIN_STILL_CLOSED
        assert read_submission(minted).status == SubmissionStatus.MINTED
        assert fake_ledger.campaigns[7].closed

        events = audit_events(minted)
        assert [e.action for e in events] == [
            AuditAction.CAMPAIGN_CLOSED.value,
            AuditAction.CAMPAIGN_REACTIVATED.value,
        ]
        assert events[1].payload["warnings"] == [ON_CHAIN_STILL_CLOSED]


# =============================================================================
# Validation
# =============================================================================


class TestValidation:

    def test_invalid_action(self, controller, ledger_ctx, minted, audit_events):
        with pytest.raises(InvalidActionError) as exc_info:
            controller.execute(ledger_ctx, minted, "reopen", actor=TEST_ACTOR)
        assert exc_info.value.allowed == LifecycleAction.values()
        assert audit_events(minted) == []

    def test_parse_action_is_case_insensitive(self):
        assert parse_action(" Close ") == LifecycleAction.CLOSE
        assert parse_action(LifecycleAction.REACTIVATE) == LifecycleAction.REACTIVATE

    def test_blank_actor_rejected(self, controller, ledger_ctx, minted):
        with pytest.raises(InputError):
            controller.execute(ledger_ctx, minted, "deactivate", actor="  ")

    def test_unknown_submission(self, controller, ledger_ctx):
        with pytest.raises(SubmissionNotFoundError):
            controller.execute(ledger_ctx, uuid4(), "deactivate", actor=TEST_ACTOR)

    def test_cas_budget_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            CampaignLifecycleController(session_factory, cas_max_attempts=0)

    def test_transition_is_logged_with_context(
        self, controller, ledger_ctx, minted, captured_logs
    ):
        controller.execute(ledger_ctx, minted, "deactivate", actor=TEST_ACTOR)

        applied = [r for r in captured_logs() if r["message"] == "lifecycle_transition_applied"]
        assert len(applied) == 1
        assert applied[0]["actor"] == TEST_ACTOR
        assert applied[0]["action"] == "deactivate"
        assert applied[0]["submission_id"] == str(minted)
        assert applied[0]["new_status"] == "deactivated"
