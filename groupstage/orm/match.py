"""
Group-stage match slots.

In the group-stage flow a match is a schedule slot for a whole group, not a
fixture between two opponents, so team1/team2 are normally empty.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, CheckConstraint, Index
)

from groupstage.orm.base import Base, utcnow, isoformat


class MatchStatus(str, Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    group_id = Column(
        Integer,
        ForeignKey("groups.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    match_number = Column(Integer, nullable=False, default=1)

    team1_id = Column(Integer, nullable=True)
    team2_id = Column(Integer, nullable=True)

    scheduled_time = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=30)
    venue = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=MatchStatus.SCHEDULED.value)
    team1_score = Column(Integer, nullable=True)
    team2_score = Column(Integer, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_match_duration_positive"),
        Index("idx_match_tournament_round", "tournament_id", "round"),
    )

    @property
    def result(self):
        if self.team1_score is None and self.team2_score is None:
            return None
        return {"team1Score": self.team1_score, "team2Score": self.team2_score}

    def to_dict(self):
        return {
            "id": self.id,
            "round": self.round,
            "groupId": self.group_id,
            "matchNumber": self.match_number,
            "team1": self.team1_id,
            "team2": self.team2_id,
            "scheduledTime": isoformat(self.scheduled_time),
            "durationMinutes": self.duration_minutes,
            "venue": self.venue,
            "description": self.description,
            "status": self.status,
            "result": self.result,
            "startedAt": isoformat(self.started_at),
            "completedAt": isoformat(self.completed_at),
        }
