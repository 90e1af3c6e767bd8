from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.models.profile import Profile
from spotmate.services.change_feed import ChangeFeed, change_feed
from spotmate.services.geo import Coordinate, generate_pair_id, pair_low_high
from spotmate.services.meeting import MeetingDetails, build_meeting_details
from spotmate.services.places import VenueResolver

from .models import ConnectionRequest, Match


@dataclass
class ConnectResult:
    success: bool
    message: str
    auto_accepted: Optional[bool] = None
    request_id: Optional[int] = None
    match_id: Optional[int] = None


# ---------- HELPERS ----------

def _locations(db: Session, user_ids: List[str]) -> Dict[str, Coordinate]:
    rows = db.query(Profile.id, Profile.lat, Profile.lng).filter(Profile.id.in_(user_ids)).all()
    return {
        r.id: Coordinate(lat=r.lat, lng=r.lng)
        for r in rows
        if r.lat is not None and r.lng is not None
    }


def _meeting_details(db: Session, user_a: str, user_b: str, resolver: VenueResolver) -> Optional[MeetingDetails]:
    coords = _locations(db, [user_a, user_b])
    if user_a not in coords or user_b not in coords:
        return None
    return build_meeting_details(coords[user_a], coords[user_b], resolver)


def get_match(db: Session, user_a: str, user_b: str) -> Optional[Match]:
    return db.query(Match).filter(Match.pair_id == generate_pair_id(user_a, user_b)).first()


def insert_or_get_match(db: Session, user_a: str, user_b: str, **fields) -> Tuple[Match, bool]:
    """
    Create the pair's Match unless one exists. A concurrent insert that
    loses on the unique pair_id gets the winner's row back.
    """
    existing = get_match(db, user_a, user_b)
    if existing:
        return existing, False

    low, high = pair_low_high(user_a, user_b)
    match = Match(pair_id=generate_pair_id(user_a, user_b), uid_a=low, uid_b=high, **fields)
    db.add(match)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_match(db, user_a, user_b)
        if existing is None:
            raise
        return existing, False

    db.refresh(match)
    return match, True


def _connect_pair(db: Session, user_a: str, user_b: str, details: MeetingDetails) -> Tuple[Match, bool]:
    """Returns (match, newly_connected)."""
    meeting = dict(
        venue_name=details.venue_name,
        landmark=details.landmark,
        venue_lat=details.venue_lat,
        venue_lng=details.venue_lng,
        meet_code=details.meet_code,
        shared_emoji_code=details.shared_emoji_code,
    )
    match, created = insert_or_get_match(db, user_a, user_b, status="connected", **meeting)
    if created:
        return match, True
    if match.status == "connected":
        return match, False

    match.status = "connected"
    for key, value in meeting.items():
        setattr(match, key, value)
    db.commit()
    return match, True


# ---------- CONNECTION LOGIC ----------

def send_connection_request(
    db: Session,
    sender_id: str,
    receiver_id: str,
    venue_resolver: Optional[VenueResolver] = None,
    feed: ChangeFeed = change_feed,
) -> ConnectResult:
    if sender_id == receiver_id:
        return ConnectResult(False, "You cannot connect with yourself")

    try:
        existing_match = get_match(db, sender_id, receiver_id)
        if existing_match and existing_match.status == "connected":
            return ConnectResult(False, "You're already connected with this person")

        existing_request = db.query(ConnectionRequest).filter(
            ConnectionRequest.sender_id == sender_id,
            ConnectionRequest.receiver_id == receiver_id,
            ConnectionRequest.status == "pending",
        ).first()
        if existing_request:
            return ConnectResult(False, "Connection request already sent")

        receiver = db.get(Profile, receiver_id)
        if receiver is None:
            return ConnectResult(False, "Receiver profile not found")

        if receiver.auto_accept_connections is True:
            details = _meeting_details(db, sender_id, receiver_id, venue_resolver or VenueResolver())
            if details is None:
                return ConnectResult(False, "User locations not available")

            match, connected = _connect_pair(db, sender_id, receiver_id, details)
            if not connected:
                return ConnectResult(False, "You're already connected with this person", match_id=match.id)

            logger.info(f"[connect] auto-accepted | {sender_id} -> {receiver_id} match={match.id}")
            feed.publish("matches", "insert", {"id": match.id, "uid_a": match.uid_a, "uid_b": match.uid_b})
            return ConnectResult(
                True,
                f"You're now connected with {receiver.name or 'them'}!",
                auto_accepted=True,
                match_id=match.id,
            )

        conn = ConnectionRequest(sender_id=sender_id, receiver_id=receiver_id, status="pending")
        db.add(conn)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return ConnectResult(False, "Connection request already sent")
        db.refresh(conn)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[connect] send failed | {sender_id} -> {receiver_id} err={exc}")
        return ConnectResult(False, "Failed to send connection request")

    logger.info(f"[connect] request sent | {sender_id} -> {receiver_id} id={conn.id}")
    feed.publish(
        "connection_requests",
        "insert",
        {"id": conn.id, "sender_id": sender_id, "receiver_id": receiver_id, "status": "pending"},
    )
    return ConnectResult(
        True,
        f"Connection request sent to {receiver.name or 'them'}",
        auto_accepted=False,
        request_id=conn.id,
    )


def accept_connection_request(
    db: Session,
    request_id: int,
    accepter_id: str,
    venue_resolver: Optional[VenueResolver] = None,
    feed: ChangeFeed = change_feed,
) -> ConnectResult:
    try:
        conn = db.get(ConnectionRequest, request_id)
        if not conn:
            return ConnectResult(False, "Connection request not found")

        if accepter_id != conn.receiver_id:
            return ConnectResult(False, "Not authorized")

        if conn.status == "rejected":
            return ConnectResult(False, "Connection request was already rejected")

        details = _meeting_details(db, accepter_id, conn.sender_id, venue_resolver or VenueResolver())
        if details is None:
            return ConnectResult(False, "User locations not available")

        match, _ = _connect_pair(db, accepter_id, conn.sender_id, details)

        if conn.status != "accepted":
            conn.status = "accepted"
            db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[connect] accept failed | request={request_id} err={exc}")
        return ConnectResult(False, "Failed to accept connection")

    logger.info(f"[connect] accepted | request={request_id} match={match.id}")
    feed.publish(
        "connection_requests",
        "update",
        {"id": conn.id, "sender_id": conn.sender_id, "receiver_id": conn.receiver_id, "status": "accepted"},
    )
    return ConnectResult(True, "Connection accepted!", request_id=conn.id, match_id=match.id)


def reject_connection_request(
    db: Session,
    request_id: int,
    rejecter_id: str,
    feed: ChangeFeed = change_feed,
) -> ConnectResult:
    try:
        conn = db.get(ConnectionRequest, request_id)
        if not conn:
            return ConnectResult(False, "Connection request not found")

        if rejecter_id != conn.receiver_id:
            return ConnectResult(False, "Not authorized")

        if conn.status == "accepted":
            return ConnectResult(False, "Connection request was already accepted")

        conn.status = "rejected"
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[connect] reject failed | request={request_id} err={exc}")
        return ConnectResult(False, "Failed to reject connection")

    feed.publish(
        "connection_requests",
        "update",
        {"id": conn.id, "sender_id": conn.sender_id, "receiver_id": conn.receiver_id, "status": "rejected"},
    )
    return ConnectResult(True, "Connection request rejected", request_id=conn.id)


def incoming_requests(db: Session, user_id: str) -> List[ConnectionRequest]:
    return (
        db.query(ConnectionRequest)
        .filter(
            ConnectionRequest.receiver_id == user_id,
            ConnectionRequest.status == "pending",
        )
        .order_by(ConnectionRequest.created_at.desc(), ConnectionRequest.id.desc())
        .all()
    )
