"""
Base class for kernel write services (SubmissionStore, AuditorService).

Write services work inside a transaction they do not own: they flush and
leave commit/rollback to the caller.  That is how a compare-and-set status
write and its audit event, issued through two services on one session,
commit together or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from campaign_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's session.  Reads belong in campaign_kernel.selectors."""

    def __init__(self, session: Session):
        self.session = session
