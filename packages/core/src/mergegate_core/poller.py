"""External trigger and poller.

``trigger`` never posts twice for the same head SHA, including across
resumed sessions (the caller seeds the already-requested set from the
checkpoint). ``poll`` is the only suspension point in a session: a bounded
blocking wait at a fixed interval that ends on a response or on deadline
expiry, whichever comes first.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from mergegate_core.errors import TransientServiceError
from mergegate_core.external import ExternalReviewService
from mergegate_core.models import Comment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Responded:
    comments: list[Comment] = field(default_factory=list)


@dataclass(frozen=True)
class TimedOut:
    reason: str = "deadline elapsed without a response"


class ExternalReviewPoller:
    def __init__(
        self,
        service: ExternalReviewService,
        already_requested: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._service = service
        self._requested: set[str] = set(already_requested)
        self._clock = clock
        self._sleep = sleep

    @property
    def requested(self) -> frozenset[str]:
        return frozenset(self._requested)

    def trigger(self, head_sha: str) -> bool:
        """Request an external review of head_sha. Returns False if one was already requested.

        Raises TransientServiceError if the service cannot be reached.
        """
        if head_sha in self._requested:
            logger.info("Review already requested for %s; not re-posting", head_sha[:7])
            return False
        request_id = self._service.post_review_request(head_sha)
        self._requested.add(head_sha)
        logger.info("Requested external review of %s (request %s)", head_sha[:7], request_id)
        return True

    def poll(
        self,
        head_sha: str,
        since: datetime,
        deadline: float,
        interval: float,
        seen: Iterable[str] = (),
    ) -> Responded | TimedOut:
        """Wait up to ``deadline`` seconds for the service to respond.

        Comments whose ids are in ``seen`` were delivered by an earlier poll
        and are not returned again.

        Transient errors while polling are logged and treated as "no response
        yet"; only the deadline ends the wait.
        """
        known = set(seen)
        end = self._clock() + deadline
        attempt = 0
        while True:
            attempt += 1
            try:
                comments = [c for c in self._service.list_comments(since) if c.id not in known]
                if comments or self._service.has_reviewed(head_sha, since):
                    logger.info("External review responded after %d poll(s) with %d comment(s)", attempt, len(comments))
                    return Responded(comments=comments)
            except TransientServiceError as e:
                logger.warning("Poll %d failed (will retry until deadline): %s", attempt, e)

            remaining = end - self._clock()
            if remaining <= 0:
                logger.warning("External review of %s timed out after %d poll(s)", head_sha[:7], attempt)
                return TimedOut()
            self._sleep(min(interval, remaining))
