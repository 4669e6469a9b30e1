"""
Pytest fixtures for the campaign consistency test suite.

Provides:
- A fresh SQLite database file per test (WAL mode, real commits)
- A scriptable in-memory ledger gateway with failure injection
- Submission factories and audit trail helpers

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the per-test SQLite file.  Tables are dropped and recreated per test.
"""

import itertools
import json
import logging
import os
import threading
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import replace
from io import StringIO
from uuid import UUID

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from campaign_kernel.db.engine import build_engine, create_tables, drop_tables, session_scope
from campaign_kernel.domain.clock import DeterministicClock
from campaign_kernel.domain.dtos import (
    CloseReceipt,
    OnChainCampaign,
    SubmissionInfo,
    SubmissionStatus,
)
from campaign_kernel.domain.ledger import LedgerContext, LedgerGateway, RetryPolicy
from campaign_kernel.exceptions import LedgerReadError, LedgerWriteError
from campaign_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from campaign_kernel.models.audit_event import AuditEvent
from campaign_kernel.models.submission import Submission
from campaign_kernel.selectors.submission_selector import SubmissionSelector

CONTRACT = "0x1111111111111111111111111111111111111111"
OTHER_CONTRACT = "0x2222222222222222222222222222222222222222"
CHAIN_ID = 84532
TEST_ACTOR = "ops@example.com"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture campaign_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, reconciliation_service, ledger_ctx):
            reconciliation_service.run_reconciliation(ledger_ctx)
            logs = captured_logs()
            assert any(r["message"] == "reconciliation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("campaign_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database fixtures (real commits, one database per test)
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'campaign_test.db'}"
    engine = build_engine(url)
    drop_tables(engine)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Clock fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


class RacingClock(DeterministicClock):
    """
    DeterministicClock that runs armed callbacks on its next ``now()`` calls.

    SubmissionStore reads the clock immediately before issuing its guarded
    UPDATE, so an armed callback that commits a change to the same row
    reproduces a concurrent writer winning the race.
    """

    def __init__(self):
        super().__init__()
        self._armed: list[Callable[[], None]] = []
        self.fired = 0

    def arm(self, callback: Callable[[], None], times: int = 1) -> None:
        self._armed.extend([callback] * times)

    def now(self):
        if self._armed:
            callback = self._armed.pop(0)
            self.fired += 1
            callback()
        return super().now()


@pytest.fixture
def racing_clock():
    return RacingClock()


# =============================================================================
# Ledger fixtures
# =============================================================================


class FakeLedgerGateway(LedgerGateway):
    """
    In-memory ledger with scripted failures.

    Campaign ids are assigned sequentially from 0, like the contract does.
    ``fail_reads(id, times)`` makes the next ``times`` reads of that id raise
    LedgerReadError (``times=-1`` fails forever).  ``close_outcome`` selects
    what ``close_campaign`` does: confirmed, reverted, unconfirmed, rejected.
    """

    def __init__(self, supports_batch: bool = False):
        self.supports_batch = supports_batch
        self.campaigns: dict[int, OnChainCampaign | None] = {}
        self.read_calls: Counter = Counter()
        self.batch_calls = 0
        self.count_calls = 0
        self.close_calls: list[int] = []
        self.close_outcome = "confirmed"
        self.on_close: Callable[[int], None] | None = None
        self._read_failures: dict[int, int] = {}
        self._count_failures = 0
        self._tx_ids = itertools.count(1)
        self._lock = threading.Lock()

    # -- scripting ------------------------------------------------------

    def add_campaign(
        self,
        base_uri: str,
        active: bool = True,
        closed: bool = False,
        editions_minted: int = 0,
        max_editions: int = 100,
    ) -> OnChainCampaign:
        campaign = OnChainCampaign(
            campaign_id=len(self.campaigns),
            base_uri=base_uri,
            active=active,
            closed=closed,
            editions_minted=editions_minted,
            max_editions=max_editions,
        )
        self.campaigns[campaign.campaign_id] = campaign
        return campaign

    def add_empty_slot(self) -> int:
        campaign_id = len(self.campaigns)
        self.campaigns[campaign_id] = OnChainCampaign(campaign_id, "", False, False)
        return campaign_id

    def fail_reads(self, campaign_id: int, times: int = -1) -> None:
        self._read_failures[campaign_id] = times

    def fail_count(self, times: int) -> None:
        self._count_failures = times

    # -- LedgerGateway --------------------------------------------------

    def get_campaign_count(self) -> int:
        with self._lock:
            self.count_calls += 1
            if self._count_failures:
                self._count_failures -= 1
                raise LedgerReadError("get_campaign_count", "injected failure")
        return len(self.campaigns)

    def get_campaign_projection(self, campaign_id: int) -> OnChainCampaign:
        with self._lock:
            self.read_calls[campaign_id] += 1
            remaining = self._read_failures.get(campaign_id, 0)
            if remaining:
                if remaining > 0:
                    self._read_failures[campaign_id] = remaining - 1
                raise LedgerReadError("get_campaign", "injected failure", campaign_id)
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            raise LedgerReadError("get_campaign", "campaign slot not populated", campaign_id)
        return campaign

    def get_campaign_projections(self, campaign_ids: Iterable[int]):
        with self._lock:
            self.batch_calls += 1
        return super().get_campaign_projections(campaign_ids)

    def close_campaign(self, campaign_id: int, timeout: float) -> CloseReceipt:
        self.close_calls.append(campaign_id)
        tx_id = f"0xtx{next(self._tx_ids)}"
        if self.close_outcome == "rejected":
            raise LedgerWriteError(campaign_id, "relay rejected transaction")
        if self.on_close is not None:
            self.on_close(campaign_id)
        if self.close_outcome == "reverted":
            raise LedgerWriteError(campaign_id, "transaction reverted", tx_id=tx_id)
        if self.close_outcome == "unconfirmed":
            return CloseReceipt(tx_id=tx_id, confirmed=False)
        campaign = self.campaigns[campaign_id]
        self.campaigns[campaign_id] = replace(campaign, active=False, closed=True)
        return CloseReceipt(tx_id=tx_id, confirmed=True)


@pytest.fixture
def fake_ledger():
    return FakeLedgerGateway()


@pytest.fixture
def batch_ledger():
    return FakeLedgerGateway(supports_batch=True)


def make_ledger_ctx(gateway: LedgerGateway, **overrides) -> LedgerContext:
    """LedgerContext with zero backoff so retry tests do not sleep."""
    params = dict(
        gateway=gateway,
        contract_address=CONTRACT,
        chain_id=CHAIN_ID,
        contract_version="v5",
        confirmation_timeout_seconds=5.0,
        retry=RetryPolicy(max_attempts=3, backoff_initial_seconds=0, backoff_max_seconds=0),
        max_concurrency=4,
        batch_size=10,
    )
    params.update(overrides)
    return LedgerContext(**params)


@pytest.fixture
def ledger_ctx(fake_ledger) -> LedgerContext:
    return make_ledger_ctx(fake_ledger)


# =============================================================================
# Submission fixtures
# =============================================================================


@pytest.fixture
def create_submission(session_factory):
    """Factory fixture that inserts and commits a submission, returning its id."""

    def _create(
        title: str = "Test campaign",
        status: SubmissionStatus = SubmissionStatus.MINTED,
        campaign_id: int | None = None,
        metadata_uri: str | None = None,
        contract_address: str | None = CONTRACT,
        visible_on_marketplace: bool = True,
        chain_id: int | None = CHAIN_ID,
        contract_version: str | None = "v5",
    ) -> UUID:
        with session_scope(session_factory) as s:
            submission = Submission(
                title=title,
                status=SubmissionStatus(status).value,
                campaign_id=campaign_id,
                metadata_uri=metadata_uri,
                contract_address=contract_address,
                visible_on_marketplace=visible_on_marketplace,
                chain_id=chain_id,
                contract_version=contract_version,
            )
            s.add(submission)
            s.flush()
            return submission.id

    return _create


@pytest.fixture
def read_submission(session_factory):
    def _read(submission_id: UUID) -> SubmissionInfo:
        with session_scope(session_factory) as s:
            return SubmissionSelector(s).require(submission_id)

    return _read


@pytest.fixture
def audit_events(session_factory):
    """Audit rows for one submission (or all rows), oldest first."""

    def _events(submission_id: UUID | None = None) -> list[AuditEvent]:
        with session_scope(session_factory) as s:
            query = select(AuditEvent).order_by(AuditEvent.occurred_at, AuditEvent.id)
            if submission_id is not None:
                query = query.where(AuditEvent.entity_id == submission_id)
            return list(s.execute(query).scalars().all())

    return _events


@pytest.fixture
def force_submission(session_factory):
    """Commit a change to a submission from another session (a concurrent writer)."""

    def _force(submission_id: UUID, **changes) -> None:
        with session_scope(session_factory) as s:
            submission = s.get(Submission, submission_id)
            for key, value in changes.items():
                setattr(submission, key, getattr(value, "value", value))

    return _force
