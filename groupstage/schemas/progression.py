"""
Pydantic Schemas for the progression engine.

Request bodies use the camelCase keys the web client sends
(`teamsPerGroup`, `qualifiedTeams`, ...); snake_case names are accepted too.
Range checks that carry a domain reason code (negative stats, policy < 1)
are left to the services so they surface as 400 with that code.
"""
from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Tournament & Registration
# ============================================================================

class TournamentCreate(CamelModel):
    """Schema for creating a tournament; the caller becomes its host."""
    name: str = Field(..., min_length=1, max_length=200)
    game: Optional[str] = None
    format: str = Field("Solo", description="Solo, Duo or Squad")
    total_rounds: int = 1
    total_slots: int = 100
    teams_per_group: int = 4
    registration_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None


class TeamMemberIn(CamelModel):
    user_id: str
    username: Optional[str] = None


class JoinRequest(CamelModel):
    """Solo joins need no body; Duo/Squad captains send the team."""
    team_name: Optional[str] = None
    display_name: Optional[str] = None
    members: List[TeamMemberIn] = Field(default_factory=list)


class ParticipantCreate(CamelModel):
    """Host-side registration."""
    user_id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None
    display_name: Optional[str] = None
    members: List[TeamMemberIn] = Field(default_factory=list)


class RoundSettingsRequest(CamelModel):
    round: int
    round_name: Optional[str] = None
    teams_per_group: int
    total_slots: Optional[int] = None


# ============================================================================
# Groups
# ============================================================================

class AssignGroupsRequest(CamelModel):
    round: int = 1
    participant_ids: Optional[List[int]] = None
    teams_per_group: Optional[int] = None


class AssignParticipantRequest(CamelModel):
    participant_id: int
    group_id: Optional[Union[int, str]] = None
    round: int = 1

    @field_validator("group_id")
    @classmethod
    def empty_means_unassign(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return None
            if not value.isdigit():
                raise ValueError("groupId must be a group id or an empty string")
            return int(value)
        return value


# ============================================================================
# Schedule
# ============================================================================

class MatchSlotIn(CamelModel):
    scheduled_time: Optional[datetime] = None
    venue: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = None


class ScheduleCreateRequest(CamelModel):
    round: int
    group_id: int
    count: Optional[int] = None
    matches: List[MatchSlotIn] = Field(default_factory=list)


class MatchUpdateRequest(CamelModel):
    scheduled_time: Optional[datetime] = None
    venue: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = None


class StartMatchRequest(CamelModel):
    match_id: int


class MatchResultRequest(CamelModel):
    team1_score: Optional[int] = None
    team2_score: Optional[int] = None


# ============================================================================
# Results & Qualification
# ============================================================================

class TeamStatsIn(CamelModel):
    team_id: int
    wins: int = 0
    finish_points: int = 0
    position_points: int = 0


class GroupResultRequest(CamelModel):
    round: int
    group_id: Optional[int] = None
    group_name: Optional[str] = None
    teams: List[TeamStatsIn]


class QualifyRequest(CamelModel):
    round: int
    qualified_teams: Optional[List[int]] = None
    qualification_criteria: Optional[int] = None
    next_round_teams_per_group: Optional[int] = None


class QualificationSettingsRequest(CamelModel):
    round: int
    teams_per_group: int = 2
    next_round_teams_per_group: int = 2


class QualificationOverrideRequest(CamelModel):
    team_id: int
    round: int
    qualified: bool


class NextRoundRequest(CamelModel):
    """
    `teamsPerGroup` is the next round's group size and
    `qualificationCriteria` the per-group cutoff; both are optional and fall
    back to the saved qualification settings.
    """
    current_round: Optional[int] = None
    next_round: Optional[int] = None
    teams_per_group: Optional[int] = None
    qualification_criteria: Optional[int] = None


# ============================================================================
# Broadcast
# ============================================================================

class GroupMessageRequest(CamelModel):
    group_id: int
    round: Optional[int] = None
    message: str


class BroadcastRequest(CamelModel):
    round: Optional[int] = None
    message: str
