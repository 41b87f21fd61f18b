"""External ("cloud") review service boundary.

Any service that can be asked to review a commit and later list the
comments it left implements this interface. The orchestrator depends on
ExternalReviewService, not on GitHub, so the service is swappable and
fakeable in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from mergegate_core.models import Comment


class ExternalReviewService(ABC):
    """Implementations must translate every transport failure into TransientServiceError."""

    @abstractmethod
    def post_review_request(self, head_sha: str) -> str:
        """Ask for a review of head_sha and return a request id.

        Must be idempotent per head_sha: a second call for the same SHA returns
        the existing request id without posting again.
        """

    @abstractmethod
    def list_comments(self, since: datetime) -> list[Comment]:
        """Return review comments created at or after ``since``."""

    def has_reviewed(self, head_sha: str, since: datetime) -> bool:
        """Return True if the service finished a review of head_sha after ``since``.

        Lets a clean review (no comments) count as a response. Services that
        cannot tell default to False and rely on comments arriving.
        """
        return False

    @abstractmethod
    def merge(self, head_sha: str, method: str) -> None:
        """Perform the irreversible merge of head_sha."""

    def post_report(self, body: str) -> None:
        """Publish the final session report. Optional."""
