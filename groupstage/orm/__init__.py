"""
groupstage/orm/__init__.py
ORM models package - imports every model so Base.metadata is complete
"""
from .base import Base
from .tournament import (
    Tournament, TournamentFormat, TournamentStatus,
    Participant, ParticipantKind, FORMAT_TEAM_SIZE,
    RoundSetting, QualificationSetting,
)
from .group import Group, GroupMember
from .match import Match, MatchStatus
from .results import (
    GroupResult, TeamResult, FinalPlacement,
    QualificationRecord, QualificationOverride, QualificationSource,
)

__all__ = [
    "Base",
    "Tournament",
    "TournamentFormat",
    "TournamentStatus",
    "Participant",
    "ParticipantKind",
    "FORMAT_TEAM_SIZE",
    "RoundSetting",
    "QualificationSetting",
    "Group",
    "GroupMember",
    "Match",
    "MatchStatus",
    "GroupResult",
    "TeamResult",
    "FinalPlacement",
    "QualificationRecord",
    "QualificationOverride",
    "QualificationSource",
]
