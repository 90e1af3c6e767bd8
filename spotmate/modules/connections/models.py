from sqlalchemy import Column, Integer, String, Float, DateTime, CheckConstraint, Index, text
from sqlalchemy.sql import func
from spotmate.core.db import Base


class ConnectionRequest(Base):
    __tablename__ = "connection_requests"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(String, nullable=False, index=True)
    receiver_id = Column(String, nullable=False, index=True)
    status = Column(
        String,
        CheckConstraint(
            "status IN ('pending','accepted','rejected')",
            name="connection_requests_status_check",
        ),
        nullable=False,
    )
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # one open request per direction
        Index(
            "uq_connection_requests_pending",
            "sender_id",
            "receiver_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True)
    pair_id = Column(String, nullable=False, unique=True, index=True)
    uid_a = Column(String, nullable=False, index=True)
    uid_b = Column(String, nullable=False, index=True)
    status = Column(
        String,
        CheckConstraint(
            "status IN ('pending','connected','talking')",
            name="matches_status_check",
        ),
        nullable=False,
    )

    venue_name = Column(String, nullable=True)
    landmark = Column(String, nullable=True)
    venue_lat = Column(Float, nullable=True)
    venue_lng = Column(Float, nullable=True)
    meet_code = Column(String, nullable=True)
    shared_emoji_code = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
