from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Index,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from .db import Base


class ScoutedMatch(Base):
    __tablename__ = "scouted_match"
    id = Column(String, primary_key=True)
    our_side = Column(String, nullable=False, default="home")
    home_team_name = Column(String, nullable=True)
    away_team_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="in_progress")
    result = Column(String, nullable=True)  # e.g. "Sets: 3-1 (25-20, ...)"
    event_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class MatchEventRecord(Base):
    __tablename__ = "match_event"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("scouted_match.id"), nullable=False)
    seq = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)  # full wire form of the event
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("match_id", "seq", name="uq_match_event_seq"),
        Index("ix_match_event_match_id", "match_id"),
    )
