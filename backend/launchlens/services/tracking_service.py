"""Tracking ingestion service.

WHAT:
    Turns snippet events (visit, pageview, identify) into visitors, sessions
    and raw tracking_events rows. This is the write side of the identity
    store.

WHY:
    - A visitor's first touch is snapshotted once, on creation, and never
      rewritten afterwards.
    - Every visit appends a new session; sessions are never updated.
    - Concurrent first events for the same visitor token must not create two
      visitors, so creation is an `INSERT ... ON CONFLICT DO NOTHING`
      followed by a read of the winning row.

DEFAULTS:
    Missing source -> "direct", missing medium -> "none" (both for the
    first-touch snapshot and for each session).

REFERENCES:
    - launchlens/services/identity_store.py (read side)
    - launchlens/routers/tracking.py (/v1/track, /v1/identify)
"""

import logging
import uuid
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import (
    TrackingEvent,
    TrackingEventTypeEnum,
    TrackingScript,
    Visitor,
    VisitorSession,
)
from ..utils.clock import Clock, utcnow
from ..utils.sql import dialect_insert

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "direct"
DEFAULT_MEDIUM = "none"


@dataclass
class TouchData:
    """UTM + referrer payload carried by a snippet event."""
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    content: Optional[str] = None
    term: Optional[str] = None
    referrer: Optional[str] = None
    landing_page: Optional[str] = None
    device_fingerprint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class TrackingEventInput:
    visitor_token: str
    session_token: str
    event_type: str
    touch: TouchData


class TrackingService:
    """Snippet event ingestion scoped by account.

    Usage:
        service = TrackingService(db)
        service.record_event(account_id, TrackingEventInput(
            visitor_token="v_123",
            session_token="s_456",
            event_type="visit",
            touch=TouchData(source="google", medium="cpc"),
        ))
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    # ------------------------------------------------------------------
    # Visitors
    # ------------------------------------------------------------------

    def _first_touch_snapshot(self, touch: TouchData) -> Dict[str, Any]:
        return {
            "source": touch.source or DEFAULT_SOURCE,
            "medium": touch.medium or DEFAULT_MEDIUM,
            "campaign": touch.campaign,
            "content": touch.content,
            "term": touch.term,
            "referrer": touch.referrer,
            "landing_page": touch.landing_page,
            "captured_at": self.clock().isoformat(),
        }

    def _get_visitor(self, account_id: UUID, visitor_token: str) -> Optional[Visitor]:
        return (
            self.db.query(Visitor)
            .filter(Visitor.account_id == account_id, Visitor.visitor_token == visitor_token)
            .first()
        )

    def get_or_create_visitor(
        self,
        account_id: UUID,
        visitor_token: str,
        touch: TouchData,
        email: Optional[str] = None,
    ) -> Visitor:
        """Return the visitor for this token, creating it with a first-touch snapshot if new.

        An existing visitor's first touch is left untouched. Its email is
        filled only when it is not already set.
        """
        visitor = self._get_visitor(account_id, visitor_token)
        if visitor is None:
            now = self.clock()
            stmt = dialect_insert(self.db, Visitor.__table__).values(
                id=uuid.uuid4(),
                account_id=account_id,
                visitor_token=visitor_token,
                email=email,
                first_touch=self._first_touch_snapshot(touch),
                device_fingerprint=touch.device_fingerprint,
                created_at=now,
                updated_at=now,
            ).on_conflict_do_nothing(index_elements=["account_id", "visitor_token"])
            self.db.execute(stmt)
            visitor = self._get_visitor(account_id, visitor_token)
            logger.debug("[TRACKING] Visitor ready: account=%s token=%s", account_id, visitor_token)

        if email and not visitor.email:
            visitor.email = email
            visitor.updated_at = self.clock()
            self.db.flush()

        return visitor

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def record_event(self, account_id: UUID, event: TrackingEventInput) -> VisitorSession:
        """Record a visit/pageview: visitor (get-or-create), new session, raw event row."""
        if event.event_type not in (TrackingEventTypeEnum.visit.value, TrackingEventTypeEnum.pageview.value):
            raise ValueError(f"Unsupported event type: {event.event_type}")

        visitor = self.get_or_create_visitor(account_id, event.visitor_token, event.touch)
        now = self.clock()

        touch = event.touch
        session = VisitorSession(
            visitor_id=visitor.id,
            session_token=event.session_token,
            source=touch.source or DEFAULT_SOURCE,
            medium=touch.medium or DEFAULT_MEDIUM,
            campaign=touch.campaign,
            content=touch.content,
            term=touch.term,
            referrer=touch.referrer,
            landing_page=touch.landing_page,
            timestamp=now,
        )
        self.db.add(session)
        self.db.add(TrackingEvent(
            account_id=account_id,
            visitor_token=event.visitor_token,
            session_token=event.session_token,
            event_type=event.event_type,
            event_data=touch.to_dict(),
            timestamp=now,
        ))
        self.db.commit()
        return session

    def identify(self, account_id: UUID, visitor_token: str, email: str) -> Visitor:
        """Attach an email to a visitor (never overwriting an existing one)."""
        visitor = self.get_or_create_visitor(account_id, visitor_token, TouchData(), email=email)
        self.db.add(TrackingEvent(
            account_id=account_id,
            visitor_token=visitor_token,
            event_type=TrackingEventTypeEnum.identify.value,
            event_data={"email": email},
            timestamp=self.clock(),
        ))
        self.db.commit()
        return visitor

    # ------------------------------------------------------------------
    # Tracking scripts
    # ------------------------------------------------------------------

    def get_or_create_script_id(self, account_id: UUID) -> str:
        """Public snippet id for the account, created on first request."""
        script = self.db.query(TrackingScript).filter(TrackingScript.account_id == account_id).first()
        if script:
            return script.script_id

        stmt = dialect_insert(self.db, TrackingScript.__table__).values(
            id=uuid.uuid4(),
            account_id=account_id,
            script_id=str(uuid.uuid4()),
            created_at=self.clock(),
        ).on_conflict_do_nothing(index_elements=["account_id"])
        self.db.execute(stmt)
        self.db.commit()

        script = self.db.query(TrackingScript).filter(TrackingScript.account_id == account_id).one()
        logger.info("[TRACKING] Created tracking script for account %s", account_id)
        return script.script_id

    def account_for_script(self, script_id: str) -> Optional[UUID]:
        script = self.db.query(TrackingScript).filter(TrackingScript.script_id == script_id).first()
        return script.account_id if script else None
