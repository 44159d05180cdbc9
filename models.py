"""Domain records for categories, groups, matches and ratings.

A category exclusively owns its groups and matches. Matches and groups refer to
players by id only; a player can appear in many categories.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from config import INITIAL_RATING


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    MIXED = "MIXED"  # category-only


class TournamentFormat(str, Enum):
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"
    GROUPS_THEN_ELIMINATION = "GROUPS_THEN_ELIMINATION"
    ROUND_ROBIN = "ROUND_ROBIN"


class CategoryStatus(str, Enum):
    REGISTRATION = "REGISTRATION"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    GROUP_STAGE = "GROUP_STAGE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class MatchStage(str, Enum):
    GROUP = "GROUP"
    KNOCKOUT = "KNOCKOUT"


class MatchStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"


@dataclass
class Player:
    id: Optional[int]
    name: str
    gender: Gender
    birth_date: Optional[date] = None
    rating: int = INITIAL_RATING


@dataclass
class Registration:
    player_id: int
    registered_at: datetime


@dataclass
class TournamentCategory:
    id: Optional[int]
    name: str
    format: TournamentFormat
    status: CategoryStatus = CategoryStatus.REGISTRATION
    gender: Gender = Gender.MIXED
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    rating_min: Optional[int] = None
    rating_max: Optional[int] = None
    capacity: int = 32
    k_factor: Optional[int] = None
    players_per_group: Optional[int] = None
    advancing_per_group: Optional[int] = None
    event_date: Optional[date] = None
    registrations: List[Registration] = field(default_factory=list)

    @property
    def player_ids(self):
        return [reg.player_id for reg in self.registrations]

    def is_registered(self, player_id):
        return any(reg.player_id == player_id for reg in self.registrations)


@dataclass
class Group:
    id: Optional[int]
    category_id: Optional[int]
    name: str
    player_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class SetScore:
    """Points scored by each side in one set."""

    p1: int
    p2: int


@dataclass
class Match:
    id: Optional[int]
    category_id: Optional[int]
    stage: MatchStage
    round: int
    position: int
    player1_id: Optional[int] = None
    player2_id: Optional[int] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    set_scores: List[SetScore] = field(default_factory=list)
    player1_sets: Optional[int] = None
    player2_sets: Optional[int] = None
    winner_id: Optional[int] = None
    group_id: Optional[int] = None
    player1_rating_before: Optional[int] = None
    player2_rating_before: Optional[int] = None
    player1_rating_after: Optional[int] = None
    player2_rating_after: Optional[int] = None
    completed_at: Optional[datetime] = None
    # Index into the group list returned by groups.build_groups; resolved to
    # group_id when the match is first inserted.
    group_index: Optional[int] = field(default=None, compare=False, repr=False)

    @property
    def is_completed(self):
        return self.status == MatchStatus.COMPLETED

    @property
    def has_both_players(self):
        return self.player1_id is not None and self.player2_id is not None


@dataclass
class RatingHistoryRecord:
    id: Optional[int]
    player_id: int
    match_id: int
    category_id: int
    rating_before: int
    rating_after: int
    delta: int
    recorded_at: datetime


def to_dict(record):
    """Convert a record (or list of records) into JSON-friendly primitives."""
    if isinstance(record, list):
        return [to_dict(item) for item in record]
    data = {}
    for item in dataclasses.fields(record):
        if item.name == "group_index":
            continue
        data[item.name] = _plain(getattr(record, item.name))
    return data


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if dataclasses.is_dataclass(value):
        return to_dict(value)
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value
