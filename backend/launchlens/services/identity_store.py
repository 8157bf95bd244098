"""Identity Store.

WHAT:
    Read-side lookups over visitors and their sessions, used by the
    attribution resolver to tie a purchase back to a browsing entity.

WHY:
    - Email is the strongest identity key; fingerprint is a fallback and
      only trusted within a short window (default 24h).
    - Sessions are the repeatable touchpoints; the newest one is last touch.

Writes (visitor/session creation) come from the tracking ingestion layer
(see tracking_service.py). This module has no side effects.

REFERENCES:
    - launchlens/services/attribution_service.py
    - launchlens/services/tracking_service.py
"""

import logging
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import Visitor, VisitorSession
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FINGERPRINT_WINDOW_HOURS = 24


class IdentityStore:
    """Visitor and session lookups scoped by account.

    Usage:
        store = IdentityStore(db)
        visitor = store.find_by_email(account_id, "buyer@example.com")
        if visitor:
            touches = store.sessions_for(visitor.id)
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def find_by_email(self, account_id: UUID, email: str) -> Optional[Visitor]:
        """Most recently created visitor with this email, or None."""
        if not email:
            return None
        return (
            self.db.query(Visitor)
            .filter(Visitor.account_id == account_id, Visitor.email == email)
            .order_by(Visitor.created_at.desc())
            .first()
        )

    def find_by_fingerprint(
        self,
        account_id: UUID,
        fingerprint: str,
        window_hours: int = DEFAULT_FINGERPRINT_WINDOW_HOURS,
    ) -> Optional[Visitor]:
        """Most recently created visitor with this fingerprint inside the window.

        Visitors created more than `window_hours` before now never match.
        """
        if not fingerprint:
            return None
        cutoff = self.clock() - timedelta(hours=window_hours)
        return (
            self.db.query(Visitor)
            .filter(
                Visitor.account_id == account_id,
                Visitor.device_fingerprint == fingerprint,
                Visitor.created_at >= cutoff,
            )
            .order_by(Visitor.created_at.desc())
            .first()
        )

    def sessions_for(self, visitor_id: UUID) -> List[VisitorSession]:
        """Sessions for a visitor, ascending by timestamp. May be empty."""
        return (
            self.db.query(VisitorSession)
            .filter(VisitorSession.visitor_id == visitor_id)
            .order_by(VisitorSession.timestamp.asc())
            .all()
        )

    def last_session(self, visitor_id: UUID) -> Optional[VisitorSession]:
        """Session with the maximum timestamp, or None when there are none."""
        return (
            self.db.query(VisitorSession)
            .filter(VisitorSession.visitor_id == visitor_id)
            .order_by(VisitorSession.timestamp.desc())
            .first()
        )
