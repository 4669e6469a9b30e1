"""Read-only query selectors."""

from campaign_kernel.selectors.base import BaseSelector
from campaign_kernel.selectors.submission_selector import SubmissionSelector

__all__ = [
    "BaseSelector",
    "SubmissionSelector",
]
