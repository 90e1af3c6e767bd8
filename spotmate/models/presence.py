from sqlalchemy import Column, String, Float, DateTime, Index

from spotmate.core.db import Base

class Presence(Base):
    __tablename__ = "presence"

    user_id = Column(String, primary_key=True, index=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    geohash = Column(String, nullable=False)

    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_presence_geohash", "geohash"),
        Index("idx_presence_updated", "updated_at"),
    )
