"""
Typed Exception Hierarchy for the Campaign Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Reconciliation touches two systems of record with different failure models.
Operators need to know *which* one failed and whether retrying is safe, so
callers catch by type and read structured attributes instead of parsing
messages:

    try:
        controller.execute(ctx, submission_id, "close", actor="ops@example")
    except LedgerWriteError as e:
        # Transaction failed or was never confirmed; off-chain is untouched
        page_operator(e.campaign_id, e.tx_id)
    except WriteConflict as e:
        # A concurrent transition raced ahead; re-read and decide again
        retry_later(e.submission_id)

Every exception carries:
  1. A CODE class attribute (machine-readable, API-safe)
  2. Structured DATA attributes (ids, stored vs on-chain values)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from CampaignKernelError:

    CampaignKernelError (base)
    |
    +-- InputError
    |   +-- InvalidActionError
    |   +-- PreconditionError
    |       +-- MissingCampaignIdError
    |
    +-- NotFoundError
    |   +-- SubmissionNotFoundError
    |   +-- CampaignNotFoundError
    |
    +-- LedgerError
    |   +-- LedgerReadError
    |   +-- LedgerWriteError
    |
    +-- ConsistencyError
    |   +-- MissingJoinKeyError
    |   +-- InactiveCampaignError
    |   +-- AmbiguousCampaignError
    |
    +-- ConcurrencyError
    |   +-- WriteConflict
    |
    +-- ConfigurationError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                  | When Raised
----------------|-----------------------|-----------------------------------------
Input           | INVALID_INPUT         | Malformed administrative request
                | INVALID_ACTION        | Lifecycle action not close/deactivate/reactivate
                | PRECONDITION_FAILED   | Transition precondition not met
                | MISSING_CAMPAIGN_ID   | close requested with no campaign_id
----------------|-----------------------|-----------------------------------------
Not found       | SUBMISSION_NOT_FOUND  | Unknown submission id
                | CAMPAIGN_NOT_FOUND    | No on-chain campaign for the join key
----------------|-----------------------|-----------------------------------------
Ledger          | LEDGER_READ_FAILED    | Transient RPC read failure (retryable)
                | LEDGER_WRITE_FAILED   | Transaction failed or unconfirmed
----------------|-----------------------|-----------------------------------------
Consistency     | MISSING_JOIN_KEY      | Submission has no metadata_uri
                | CAMPAIGN_INACTIVE     | Matched campaign is inactive on-chain
                | AMBIGUOUS_CAMPAIGN    | Several campaigns share the base URI
----------------|-----------------------|-----------------------------------------
Concurrency     | WRITE_CONFLICT        | Compare-and-set lost to a concurrent writer
----------------|-----------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR   | Invalid or missing configuration value
----------------|-----------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION| Update or delete of an append-only row
----------------|-----------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION| Update or delete of an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. LEDGER READS ARE RETRYABLE, WRITES ARE NOT:

    LedgerReadError is retried with bounded backoff by the indexer and the
    diagnostics scan.  LedgerWriteError is never retried automatically: a
    close transaction that failed needs an operator to look at it.

2. WRITE CONFLICTS RESTART THE DECIDE-AND-WRITE CYCLE:

    A WriteConflict means the row changed between read and write.  The
    lifecycle controller re-reads and decides again; batch reconciliation
    re-classifies the record once.

3. BATCH OPERATIONS NEVER RAISE PER-RECORD ERRORS:

    Reconciliation and drift scans capture these exceptions into the
    per-record results.  Only single-record administrative operations
    surface them to the caller.
"""


class CampaignKernelError(Exception):
    """
    Base exception for all campaign kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CAMPAIGN_KERNEL_ERROR"


# Input exceptions


class InputError(CampaignKernelError):
    """Malformed administrative request."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidActionError(InputError):
    """Lifecycle action is not one of the supported actions."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str, allowed: tuple[str, ...]):
        self.action = action
        self.allowed = allowed
        super().__init__(
            "action",
            f"{action!r} is not one of {', '.join(allowed)}",
        )


class PreconditionError(InputError):
    """A transition precondition does not hold; nothing was written."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, submission_id: str, reason: str):
        self.submission_id = submission_id
        super().__init__("submission", f"{submission_id}: {reason}")


class MissingCampaignIdError(PreconditionError):
    """Close requested for a submission that was never minted on-chain."""

    code: str = "MISSING_CAMPAIGN_ID"

    def __init__(self, submission_id: str, action: str):
        self.action = action
        super().__init__(
            submission_id,
            f"cannot {action}: campaign not minted on-chain (no campaign_id)",
        )


# Not-found exceptions


class NotFoundError(CampaignKernelError):
    """Base exception for unknown submissions or campaigns."""

    code: str = "NOT_FOUND"


class SubmissionNotFoundError(NotFoundError):
    """Submission with given ID was not found."""

    code: str = "SUBMISSION_NOT_FOUND"

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(f"Submission not found: {submission_id}")


class CampaignNotFoundError(NotFoundError):
    """No on-chain campaign matches the submission's metadata URI."""

    code: str = "CAMPAIGN_NOT_FOUND"

    def __init__(self, submission_id: str, metadata_uri: str, searched: int):
        self.submission_id = submission_id
        self.metadata_uri = metadata_uri
        self.searched = searched
        super().__init__(
            f"No on-chain campaign with base URI {metadata_uri} "
            f"(searched {searched} campaigns) for submission {submission_id}"
        )


# Ledger exceptions


class LedgerError(CampaignKernelError):
    """Base exception for ledger RPC failures."""

    code: str = "LEDGER_ERROR"


class LedgerReadError(LedgerError):
    """
    A ledger read failed (timeout, rate limit, node error).

    Transient by assumption: callers may retry with backoff.
    """

    code: str = "LEDGER_READ_FAILED"

    def __init__(self, operation: str, reason: str, campaign_id: int | None = None):
        self.operation = operation
        self.reason = reason
        self.campaign_id = campaign_id
        target = f" for campaign {campaign_id}" if campaign_id is not None else ""
        super().__init__(f"Ledger read {operation}{target} failed: {reason}")


class LedgerWriteError(LedgerError):
    """
    A ledger transaction failed or was not confirmed in time.

    Never retried automatically.  tx_id is set when the transaction was
    submitted but its outcome is failed or unknown.
    """

    code: str = "LEDGER_WRITE_FAILED"

    def __init__(self, campaign_id: int, reason: str, tx_id: str | None = None):
        self.campaign_id = campaign_id
        self.reason = reason
        self.tx_id = tx_id
        suffix = f" (tx {tx_id})" if tx_id else ""
        super().__init__(
            f"Ledger write for campaign {campaign_id} failed: {reason}{suffix}"
        )


# Consistency exceptions


class ConsistencyError(CampaignKernelError):
    """Base exception for drift that has no safe automatic repair."""

    code: str = "CONSISTENCY_ERROR"


class MissingJoinKeyError(ConsistencyError):
    """Submission has no metadata_uri, so it cannot be joined to the ledger."""

    code: str = "MISSING_JOIN_KEY"

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(f"Submission {submission_id} has no metadata_uri")


class InactiveCampaignError(ConsistencyError):
    """The on-chain campaign matching the join key is not active."""

    code: str = "CAMPAIGN_INACTIVE"

    def __init__(self, submission_id: str, campaign_id: int, closed: bool):
        self.submission_id = submission_id
        self.campaign_id = campaign_id
        self.closed = closed
        super().__init__(
            f"Campaign {campaign_id} matches submission {submission_id} "
            f"but is not active on-chain (closed={closed})"
        )


class AmbiguousCampaignError(ConsistencyError):
    """Several on-chain campaigns share the submission's base URI."""

    code: str = "AMBIGUOUS_CAMPAIGN"

    def __init__(self, submission_id: str, metadata_uri: str, candidates: tuple[int, ...]):
        self.submission_id = submission_id
        self.metadata_uri = metadata_uri
        self.candidates = candidates
        super().__init__(
            f"Base URI {metadata_uri} of submission {submission_id} is shared "
            f"by campaigns {list(candidates)}"
        )


# Concurrency exceptions


class ConcurrencyError(CampaignKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class WriteConflict(ConcurrencyError):
    """Compare-and-set lost: the row changed since it was read."""

    code: str = "WRITE_CONFLICT"

    def __init__(
        self,
        submission_id: str,
        expected: dict,
        attempts: int = 1,
        tx_id: str | None = None,
    ):
        self.submission_id = submission_id
        self.expected = expected
        self.attempts = attempts
        self.tx_id = tx_id
        super().__init__(
            f"Submission {submission_id} was modified concurrently "
            f"(expected {expected}, {attempts} attempt(s))"
        )


# Configuration exceptions


class ConfigurationError(CampaignKernelError):
    """Configuration is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration {key}: {reason}")


# Immutability exceptions


class ImmutabilityViolationError(CampaignKernelError):
    """
    Attempted to modify or delete an append-only record.

    Audit events are never updated or deleted; submissions are never
    deleted by this core.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
