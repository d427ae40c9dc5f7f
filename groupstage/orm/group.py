"""
Round groups and their ordered membership.
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from groupstage.orm.base import Base, utcnow, isoformat


class Group(Base):
    """
    Fixed-capacity bucket of participants within one round.

    `position` is the 0-based sequence index the name was derived from
    (0 -> "Group A", 26 -> "Group AA").
    """
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    name = Column(String(50), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    capacity = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    members = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.seat",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", "name", name="uq_group_round_name"),
        CheckConstraint("capacity >= 1", name="ck_group_capacity"),
        Index("idx_group_tournament_round", "tournament_id", "round"),
    )

    @property
    def participant_ids(self):
        return [m.participant_id for m in self.members]

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    def to_dict(self):
        return {
            "id": self.id,
            "round": self.round,
            "name": self.name,
            "capacity": self.capacity,
            "participants": self.participant_ids,
            "createdAt": isoformat(self.created_at),
        }


class GroupMember(Base):
    """
    One participant's seat in a group.

    `tournament_id` and `round` are denormalized from the group so the
    database can enforce one group per participant per round.
    """
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(
        Integer,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tournament_id = Column(Integer, nullable=False)
    round = Column(Integer, nullable=False)
    participant_id = Column(
        Integer,
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seat = Column(Integer, nullable=False, default=0)

    group = relationship("Group", back_populates="members")

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", "participant_id", name="uq_member_one_group_per_round"),
    )
