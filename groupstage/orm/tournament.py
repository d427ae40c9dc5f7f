"""
Tournament aggregate root and its registration pool.

A Tournament owns its participants, per-round settings, groups, matches,
group results and qualification records. Every mutation of the aggregate
bumps `version` so concurrent writers are detected at flush time.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from groupstage.core.db_types import UniversalJSON
from groupstage.orm.base import Base, utcnow, isoformat


class TournamentFormat(str, Enum):
    """Who competes: single players or fixed-size teams."""
    SOLO = "Solo"
    DUO = "Duo"
    SQUAD = "Squad"


class TournamentStatus(str, Enum):
    """Tournament status state machine."""
    UPCOMING = "Upcoming"
    REGISTRATION_OPEN = "RegistrationOpen"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ParticipantKind(str, Enum):
    PLAYER = "player"
    TEAM = "team"


# Members per registration, captain included
FORMAT_TEAM_SIZE = {
    TournamentFormat.SOLO: 1,
    TournamentFormat.DUO: 2,
    TournamentFormat.SQUAD: 4,
}


class Tournament(Base):
    """
    Multi-round group-stage tournament.

    Attributes:
        host_id: Identity of the only user allowed to mutate progression state
        total_rounds: Number of rounds; the last one produces the final placements
        current_round: Round currently being played (changes only on advancement)
        teams_per_group: Round-1 group capacity
        winner_id, runner_up_id, third_place_id: Participant ids set at completion
    """
    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(200), nullable=False)
    game = Column(String(100), nullable=True)
    host_id = Column(String(64), nullable=False, index=True)
    format = Column(String(10), nullable=False, default=TournamentFormat.SOLO.value)
    status = Column(String(30), nullable=False, default=TournamentStatus.UPCOMING.value)

    total_rounds = Column(Integer, nullable=False, default=1)
    current_round = Column(Integer, nullable=False, default=1)
    total_slots = Column(Integer, nullable=False, default=100)
    teams_per_group = Column(Integer, nullable=False, default=4)

    # Advisory only, nothing expires on a timer
    registration_deadline = Column(DateTime, nullable=True)
    start_date = Column(DateTime, nullable=True)

    winner_id = Column(Integer, nullable=True)
    runner_up_id = Column(Integer, nullable=True)
    third_place_id = Column(Integer, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    participants = relationship(
        "Participant",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="Participant.seed_order",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("total_rounds >= 1", name="ck_tournament_total_rounds"),
        CheckConstraint("current_round >= 1", name="ck_tournament_current_round"),
        CheckConstraint("teams_per_group >= 1", name="ck_tournament_teams_per_group"),
        CheckConstraint("total_slots >= 1", name="ck_tournament_total_slots"),
        Index("idx_tournament_host_status", "host_id", "status"),
    )

    @property
    def is_closed(self) -> bool:
        return self.status in (TournamentStatus.COMPLETED.value, TournamentStatus.CANCELLED.value)

    @property
    def is_final_round(self) -> bool:
        return self.current_round >= self.total_rounds

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "game": self.game,
            "hostId": self.host_id,
            "format": self.format,
            "status": self.status,
            "totalRounds": self.total_rounds,
            "currentRound": self.current_round,
            "totalSlots": self.total_slots,
            "teamsPerGroup": self.teams_per_group,
            "registrationDeadline": isoformat(self.registration_deadline),
            "startDate": isoformat(self.start_date),
            "winnerId": self.winner_id,
            "runnerUpId": self.runner_up_id,
            "thirdPlaceId": self.third_place_id,
            "startedAt": isoformat(self.started_at),
            "completedAt": isoformat(self.completed_at),
            "cancelledAt": isoformat(self.cancelled_at),
            "createdAt": isoformat(self.created_at),
        }


class Participant(Base):
    """
    Registered competitor: an individual player or a team.

    Teams carry their roster in `members` as a list of
    {"userId": ..., "username": ...} objects, captain first.
    """
    __tablename__ = "participants"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    kind = Column(String(10), nullable=False, default=ParticipantKind.PLAYER.value)
    user_id = Column(String(64), nullable=True)
    username = Column(String(100), nullable=True)
    name = Column(String(200), nullable=True)
    display_name = Column(String(200), nullable=True)
    members = Column(UniversalJSON, nullable=True)

    # Registration order; group formation consumes the pool in this order
    seed_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    registered_at = Column(DateTime, default=utcnow, nullable=False)

    tournament = relationship("Tournament", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_participant_tournament_user"),
        Index("idx_participant_tournament_seed", "tournament_id", "seed_order"),
    )

    @property
    def is_team(self) -> bool:
        return self.kind == ParticipantKind.TEAM.value

    def to_dict(self):
        from groupstage.services.participants import resolve_display_name

        return {
            "id": self.id,
            "kind": self.kind,
            "userId": self.user_id,
            "username": self.username,
            "name": self.name,
            "displayName": resolve_display_name(self),
            "members": list(self.members or []) if self.is_team else None,
            "registeredAt": isoformat(self.registered_at),
        }


class RoundSetting(Base):
    """Host-configured shape of one round (name and group capacity)."""
    __tablename__ = "round_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    round_name = Column(String(100), nullable=True)
    teams_per_group = Column(Integer, nullable=False)
    total_slots = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", name="uq_round_setting"),
        CheckConstraint("teams_per_group >= 1", name="ck_round_setting_capacity"),
    )

    def to_dict(self):
        return {
            "round": self.round,
            "roundName": self.round_name,
            "teamsPerGroup": self.teams_per_group,
            "totalSlots": self.total_slots,
        }


class QualificationSetting(Base):
    """Saved qualification policy for a round."""
    __tablename__ = "qualification_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    teams_per_group = Column(Integer, nullable=False)
    next_round_teams_per_group = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", name="uq_qualification_setting"),
    )

    def to_dict(self):
        return {
            "round": self.round,
            "teamsPerGroup": self.teams_per_group,
            "nextRoundTeamsPerGroup": self.next_round_teams_per_group,
            "updatedAt": isoformat(self.updated_at),
        }
