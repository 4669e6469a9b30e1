"""Tests for ConsistencyDiagnostics: listing check, drift scan, unlinked campaigns."""

from uuid import uuid4

import pytest

from campaign_engines.reconciliation.checker import (
    LISTING_CONTRACT_NOT_ENABLED,
    LISTING_MISSING_CAMPAIGN_ID,
    LISTING_NOT_VISIBLE,
    NO_STORED_CAMPAIGN_ID,
)
from campaign_kernel.domain.dtos import SubmissionStatus
from campaign_kernel.exceptions import LedgerReadError, SubmissionNotFoundError
from campaign_services.diagnostics_service import ConsistencyDiagnostics
from tests.conftest import CONTRACT, OTHER_CONTRACT


@pytest.fixture
def diagnostics(session_factory):
    return ConsistencyDiagnostics(session_factory, enabled_contracts=[CONTRACT])


class TestCheckListing:

    def test_listable(self, diagnostics, create_submission):
        sid = create_submission(campaign_id=0, metadata_uri="ipfs://x")

        check = diagnostics.check_listing(sid)

        assert check.listable
        assert check.to_dict() == {
            "submissionId": str(sid),
            "listable": True,
            "unmetConditions": [],
        }

    def test_reports_unmet_conditions(self, diagnostics, create_submission):
        sid = create_submission(
            campaign_id=None,
            visible_on_marketplace=False,
            contract_address=OTHER_CONTRACT,
        )

        check = diagnostics.check_listing(sid)

        assert check.unmet == (
            LISTING_NOT_VISIBLE,
            LISTING_MISSING_CAMPAIGN_ID,
            LISTING_CONTRACT_NOT_ENABLED,
        )

    def test_unknown_submission(self, diagnostics):
        with pytest.raises(SubmissionNotFoundError):
            diagnostics.check_listing(uuid4())


class TestScanForDrift:

    def test_flags_only_drifted_records(
        self, diagnostics, ledger_ctx, fake_ledger, create_submission
    ):
        fake_ledger.add_campaign("ipfs://a")
        fake_ledger.add_campaign("ipfs://b", active=False, closed=True)
        fake_ledger.add_campaign("ipfs://c")
        ok = create_submission(title="ok", campaign_id=0, metadata_uri="ipfs://a")
        closed = create_submission(title="closed", campaign_id=1, metadata_uri="ipfs://b")
        wrong = create_submission(title="wrong", campaign_id=2, metadata_uri="ipfs://a")
        missing = create_submission(title="missing", campaign_id=None, metadata_uri="ipfs://a")
        create_submission(
            title="ignored", status=SubmissionStatus.DEACTIVATED, campaign_id=9
        )

        report = diagnostics.scan_for_drift(ledger_ctx)

        by_id = {e.submission_id: e for e in report.entries}
        assert report.total == 4
        assert not by_id[ok].needs_fix
        assert by_id[closed].needs_fix and by_id[closed].on_chain_active is False
        assert by_id[wrong].needs_fix and by_id[wrong].uri_matches is False
        assert by_id[missing].error == NO_STORED_CAMPAIGN_ID
        assert len(report.needs_fix) == 3
        assert report.to_dict()["needsFix"] == 3

    def test_read_failure_becomes_entry_not_abort(
        self, diagnostics, ledger_ctx, fake_ledger, create_submission
    ):
        fake_ledger.add_campaign("ipfs://a")
        fake_ledger.add_campaign("ipfs://b")
        fake_ledger.fail_reads(1)
        good = create_submission(campaign_id=0, metadata_uri="ipfs://a")
        bad = create_submission(campaign_id=1, metadata_uri="ipfs://b")

        report = diagnostics.scan_for_drift(ledger_ctx)

        by_id = {e.submission_id: e for e in report.entries}
        assert not by_id[good].needs_fix
        assert by_id[bad].needs_fix
        assert "injected failure" in by_id[bad].error
        assert fake_ledger.read_calls[1] == ledger_ctx.retry.max_attempts

    def test_empty_store(self, diagnostics, ledger_ctx):
        report = diagnostics.scan_for_drift(ledger_ctx)
        assert report.total == 0


class TestFindUnlinkedCampaigns:

    def test_lists_campaigns_no_submission_references(
        self, diagnostics, ledger_ctx, fake_ledger, create_submission
    ):
        fake_ledger.add_campaign("ipfs://a")
        fake_ledger.add_campaign("ipfs://b")
        fake_ledger.add_empty_slot()
        create_submission(campaign_id=0, metadata_uri="ipfs://a")
        # Any status references a URI
        create_submission(status=SubmissionStatus.APPROVED, metadata_uri="ipfs://b")
        fake_ledger.add_campaign("ipfs://c")

        report = diagnostics.find_unlinked_campaigns(ledger_ctx)

        assert [c.campaign_id for c in report.unlinked] == [3]
        assert report.on_chain_campaigns == 4
        assert report.to_dict()["unlinked"][0]["baseURI"] == "ipfs://c"

    def test_count_failure_raises(self, diagnostics, ledger_ctx, fake_ledger):
        fake_ledger.fail_count(5)
        with pytest.raises(LedgerReadError):
            diagnostics.find_unlinked_campaigns(ledger_ctx)
