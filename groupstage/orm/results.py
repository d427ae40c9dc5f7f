"""
Results ledger and qualification snapshots.

GroupResult is unique per (tournament, round, group_name); a resubmission
replaces the stored row wholesale. QualificationRecord rows are append-only
snapshots; consumers read the latest one for a round.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from groupstage.core.db_types import UniversalJSON
from groupstage.orm.base import Base, utcnow, isoformat


class FinalPlacement(str, Enum):
    """Final-round standing, kept apart from the qualify-to-next-round flag."""
    WINNER = "winner"
    RUNNER_UP = "runner_up"
    THIRD_PLACE = "third_place"


class QualificationSource(str, Enum):
    COMPUTED = "computed"
    MANUAL = "manual"


class GroupResult(Base):
    __tablename__ = "group_results"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    group_id = Column(Integer, nullable=True)
    group_name = Column(String(50), nullable=False)
    # Teams-per-group cutoff the qualified flags were derived from (NULL in the final round)
    criteria = Column(Integer, nullable=True)
    submitted_by = Column(String(64), nullable=True)
    submitted_at = Column(DateTime, default=utcnow, nullable=False)

    teams = relationship(
        "TeamResult",
        back_populates="group_result",
        cascade="all, delete-orphan",
        order_by="TeamResult.rank",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", "group_name", name="uq_group_result_round_name"),
        Index("idx_group_result_tournament_round", "tournament_id", "round"),
    )

    # Set by the ledger on submission; True when an earlier row was replaced. Not stored.
    replaced = False

    def to_dict(self, names=None):
        names = names or {}
        return {
            "id": self.id,
            "round": self.round,
            "groupId": self.group_id,
            "groupName": self.group_name,
            "criteria": self.criteria,
            "teams": [t.to_dict(names.get(t.team_id)) for t in self.teams],
            "submittedAt": isoformat(self.submitted_at),
        }


class TeamResult(Base):
    """
    One team's statistics inside a GroupResult.

    total_points is always finish_points + position_points (enforced by a
    check constraint). rank is dense 1..N inside the group.
    """
    __tablename__ = "team_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_result_id = Column(
        Integer,
        ForeignKey("group_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    team_id = Column(Integer, nullable=False)
    wins = Column(Integer, nullable=False, default=0)
    finish_points = Column(Integer, nullable=False, default=0)
    position_points = Column(Integer, nullable=False, default=0)
    total_points = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=False)
    qualified = Column(Boolean, nullable=False, default=False)
    placement = Column(String(20), nullable=True)
    input_order = Column(Integer, nullable=False, default=0)

    group_result = relationship("GroupResult", back_populates="teams")

    __table_args__ = (
        CheckConstraint("wins >= 0", name="ck_team_result_wins"),
        CheckConstraint("finish_points >= 0", name="ck_team_result_finish_points"),
        CheckConstraint("position_points >= 0", name="ck_team_result_position_points"),
        CheckConstraint("total_points = finish_points + position_points", name="ck_team_result_total"),
        CheckConstraint("rank >= 1", name="ck_team_result_rank"),
    )

    def to_dict(self, team_name=None):
        return {
            "teamId": self.team_id,
            "teamName": team_name,
            "wins": self.wins,
            "finishPoints": self.finish_points,
            "positionPoints": self.position_points,
            "totalPoints": self.total_points,
            "rank": self.rank,
            "qualified": self.qualified,
            "placement": self.placement,
        }


class QualificationRecord(Base):
    __tablename__ = "qualification_records"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    qualified_team_ids = Column(UniversalJSON, nullable=False)
    criteria = Column(Integer, nullable=False)
    next_round_teams_per_group = Column(Integer, nullable=True)
    total_qualified = Column(Integer, nullable=False)
    source = Column(String(20), nullable=False, default=QualificationSource.COMPUTED.value)
    created_by = Column(String(64), nullable=True)
    qualified_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_qualification_record_round", "tournament_id", "round", "id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "round": self.round,
            "qualifiedTeams": list(self.qualified_team_ids or []),
            "qualificationCriteria": self.criteria,
            "nextRoundTeamsPerGroup": self.next_round_teams_per_group,
            "totalQualified": self.total_qualified,
            "source": self.source,
            "qualifiedAt": isoformat(self.qualified_at),
        }


class QualificationOverride(Base):
    """Host correction of one team's qualified flag; the latest one wins."""
    __tablename__ = "qualification_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    team_id = Column(Integer, nullable=False)
    qualified = Column(Boolean, nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", "team_id", name="uq_qualification_override"),
    )

    def to_dict(self):
        return {
            "round": self.round,
            "teamId": self.team_id,
            "qualified": self.qualified,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
        }
