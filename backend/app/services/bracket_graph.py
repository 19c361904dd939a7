"""
Bracket Graph — match records, explicit forward links and stage configuration.

Every elimination match carries direct references (by match code) to the slot
its winner fills and, in double elimination, the slot its loser fills. Links
are computed once by the bracket builder and never re-derived from
round/sequence numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from app.services.errors import InvalidStageConfigError, UnresolvedSlotError

# =============================================================================
# Vocabulary
# =============================================================================

FORMAT_ROUND_ROBIN = "round_robin"
FORMAT_SINGLE_ELIMINATION = "single_elimination"
FORMAT_DOUBLE_ELIMINATION = "double_elimination"
STAGE_FORMATS = frozenset({FORMAT_ROUND_ROBIN, FORMAT_SINGLE_ELIMINATION, FORMAT_DOUBLE_ELIMINATION})
ELIMINATION_FORMATS = frozenset({FORMAT_SINGLE_ELIMINATION, FORMAT_DOUBLE_ELIMINATION})

BRANCH_WINNERS = "winners"
BRANCH_LOSERS = "losers"
BRANCH_SEMI_FINAL = "semi_final"
BRANCH_GRAND_FINAL = "grand_final"
BRANCH_GROUP = "group"

# Scheduling precedence within a round number
BRANCH_ORDER = {
    BRANCH_GROUP: 0,
    BRANCH_WINNERS: 1,
    BRANCH_LOSERS: 2,
    BRANCH_SEMI_FINAL: 3,
    BRANCH_GRAND_FINAL: 4,
}

STATUS_PENDING = "pending"
STATUS_ONGOING = "ongoing"
STATUS_COMPLETED = "completed"
STATUS_DISPUTED = "disputed"
STATUS_FORFEITED = "forfeited"
MATCH_STATUSES = frozenset({STATUS_PENDING, STATUS_ONGOING, STATUS_COMPLETED, STATUS_DISPUTED, STATUS_FORFEITED})
RESOLVED_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FORFEITED})
OPEN_STATUSES = frozenset({STATUS_PENDING, STATUS_ONGOING})

SLOT_A = "a"
SLOT_B = "b"

SLOT_TEAM = "team"
SLOT_TBD = "tbd"
SLOT_BYE = "bye"

ROLE_WINNER = "winner"
ROLE_LOSER = "loser"

VALID_BEST_OF = (1, 3, 5)
MAX_GROUPS = 26


def wins_needed(best_of: int) -> int:
    """Games needed to take a best-of series: ceil(best_of / 2)."""
    return (best_of + 1) // 2


def other_slot(slot: str) -> str:
    return SLOT_B if slot == SLOT_A else SLOT_A


def group_label(index: int) -> str:
    """0 -> 'A', 1 -> 'B', ..."""
    if index < 0 or index >= MAX_GROUPS:
        raise InvalidStageConfigError(f"Group index {index} out of range (max {MAX_GROUPS} groups)")
    return chr(ord("A") + index)


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class TeamEntry:
    """Approved entrant as handed over by the registration subsystem."""
    team_id: int
    name: str = ""
    seed: Optional[int] = None
    registration_order: int = 0
    pot: Optional[int] = None


@dataclass(frozen=True)
class SlotRef:
    """Destination of a forward link: a slot of a later match."""
    match_code: str
    slot: str


@dataclass(frozen=True)
class SlotSource:
    """Display mirror of a TBD slot: winner/loser of a prior match."""
    match_code: str
    role: str

    @property
    def placeholder(self) -> str:
        return f"{self.role.upper()}:{self.match_code}"


@dataclass
class BracketMatch:
    code: str
    branch: str
    round_number: int
    sequence: int
    best_of: int = 1
    group_label: Optional[str] = None

    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    bye_a: bool = False
    bye_b: bool = False
    source_a: Optional[SlotSource] = None
    source_b: Optional[SlotSource] = None

    winner_to: Optional[SlotRef] = None
    loser_to: Optional[SlotRef] = None
    is_final: bool = False
    loser_placement: Optional[int] = None

    status: str = STATUS_PENDING
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    winner_id: Optional[int] = None
    is_forfeit: bool = False
    is_walkover: bool = False
    scheduled_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None

    # --- slot helpers -------------------------------------------------------

    def slot_team(self, slot: str) -> Optional[int]:
        return self.team_a_id if slot == SLOT_A else self.team_b_id

    def set_slot(self, slot: str, team_id: Optional[int]) -> None:
        if slot == SLOT_A:
            self.team_a_id = team_id
            self.bye_a = False
        else:
            self.team_b_id = team_id
            self.bye_b = False

    def mark_bye(self, slot: str) -> None:
        if slot == SLOT_A:
            self.team_a_id = None
            self.bye_a = True
        else:
            self.team_b_id = None
            self.bye_b = True

    def is_bye(self, slot: str) -> bool:
        return self.bye_a if slot == SLOT_A else self.bye_b

    def slot_state(self, slot: str) -> str:
        if self.is_bye(slot):
            return SLOT_BYE
        return SLOT_TEAM if self.slot_team(slot) is not None else SLOT_TBD

    def slot_of(self, team_id: int) -> Optional[str]:
        if self.team_a_id == team_id:
            return SLOT_A
        if self.team_b_id == team_id:
            return SLOT_B
        return None

    def involves(self, team_id: int) -> bool:
        return self.slot_of(team_id) is not None

    def opponent_of(self, team_id: int) -> Optional[int]:
        slot = self.slot_of(team_id)
        if slot is None:
            return None
        return self.slot_team(other_slot(slot))

    @property
    def team_ids(self) -> List[int]:
        return [t for t in (self.team_a_id, self.team_b_id) if t is not None]

    @property
    def has_bye(self) -> bool:
        return self.bye_a or self.bye_b

    @property
    def is_ready(self) -> bool:
        """Both occupants are concrete teams."""
        return self.team_a_id is not None and self.team_b_id is not None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_playable(self) -> bool:
        """Walkover records (a bye against a TBD slot) are never played."""
        return not self.has_bye and not self.is_walkover

    @property
    def loser_id(self) -> Optional[int]:
        if self.winner_id is None:
            return None
        return self.opponent_of(self.winner_id)

    @property
    def winner_slot(self) -> Optional[str]:
        if self.winner_id is None:
            return None
        return self.slot_of(self.winner_id)

    def placeholder(self, slot: str) -> str:
        """Human-readable occupant label for TBD/bye slots."""
        state = self.slot_state(slot)
        if state == SLOT_BYE:
            return "BYE"
        if state == SLOT_TEAM:
            return f"TEAM:{self.slot_team(slot)}"
        source = self.source_a if slot == SLOT_A else self.source_b
        return source.placeholder if source else "TBD"


@dataclass
class Correction:
    """Logged dispute-resolution change to a recorded result."""
    match_code: str
    previous_winner_id: Optional[int]
    new_winner_id: Optional[int]
    previous_score: Tuple[Optional[int], Optional[int]]
    new_score: Tuple[Optional[int], Optional[int]]
    notes: str
    resolved_by: Optional[str] = None
    recorded_at: datetime = field(default_factory=datetime.utcnow)


class BracketGraph:
    """All matches of one stage, keyed by match code in construction order."""

    def __init__(self, format: str, stage_index: int = 1, allow_reset: bool = False):
        self.format = format
        self.stage_index = stage_index
        self.allow_reset = allow_reset
        self.lb_initial_rounds = 0
        self.matches: Dict[str, BracketMatch] = {}
        self.withdrawn_team_ids: Set[int] = set()
        self.corrections: List[Correction] = []

    def __iter__(self) -> Iterator[BracketMatch]:
        return iter(list(self.matches.values()))

    def __len__(self) -> int:
        return len(self.matches)

    def __contains__(self, code: str) -> bool:
        return code in self.matches

    def add(self, match: BracketMatch) -> BracketMatch:
        if match.code in self.matches:
            raise UnresolvedSlotError(f"Duplicate match code {match.code}")
        self.matches[match.code] = match
        return match

    def remove(self, code: str) -> None:
        self.matches.pop(code, None)

    def get(self, code: str) -> BracketMatch:
        match = self.matches.get(code)
        if match is None:
            raise UnresolvedSlotError(f"Match {code} does not exist in stage {self.stage_index}")
        return match

    def resolve_link(self, ref: SlotRef) -> BracketMatch:
        """Return the destination match of a forward link."""
        if ref.slot not in (SLOT_A, SLOT_B):
            raise UnresolvedSlotError(f"Invalid slot {ref.slot!r} on link to {ref.match_code}")
        return self.get(ref.match_code)

    # --- queries ------------------------------------------------------------

    def matches_for_team(self, team_id: int, open_only: bool = False) -> List[BracketMatch]:
        found = [m for m in self if m.involves(team_id)]
        if open_only:
            found = [m for m in found if m.is_open]
        return found

    def playable_matches(self) -> List[BracketMatch]:
        return [m for m in self if m.is_playable]

    def final_matches(self) -> List[BracketMatch]:
        return [m for m in self if m.is_final]

    def by_branch(self, branch: str) -> List[BracketMatch]:
        return [m for m in self if m.branch == branch]

    def groups(self) -> Dict[str, List[BracketMatch]]:
        grouped: Dict[str, List[BracketMatch]] = {}
        for m in self:
            if m.group_label is not None:
                grouped.setdefault(m.group_label, []).append(m)
        return dict(sorted(grouped.items()))

    def feeders_of(self, code: str) -> List[BracketMatch]:
        """Matches whose winner or loser link points into `code`."""
        return [
            m for m in self
            if (m.winner_to and m.winner_to.match_code == code)
            or (m.loser_to and m.loser_to.match_code == code)
        ]

    def is_complete(self) -> bool:
        """Round robin: every match resolved. Elimination: every final resolved."""
        if self.format == FORMAT_ROUND_ROBIN:
            return all(m.is_resolved for m in self)
        finals = self.final_matches()
        if not finals:
            return False
        return all(m.is_resolved for m in finals)

    def deciding_final(self) -> Optional[BracketMatch]:
        finals = self.final_matches()
        if not finals:
            return None
        return finals[-1]

    def champion_id(self) -> Optional[int]:
        if self.format == FORMAT_ROUND_ROBIN or not self.is_complete():
            return None
        final = self.deciding_final()
        return final.winner_id if final else None

    def placements(self) -> Dict[int, int]:
        """place -> team_id for the places that are already decided."""
        places: Dict[int, int] = {}
        if self.format == FORMAT_ROUND_ROBIN:
            return places
        final = self.deciding_final()
        if final is not None and final.is_resolved and final.winner_id is not None:
            places[1] = final.winner_id
            if final.loser_id is not None:
                places[2] = final.loser_id
        for m in self:
            if m.loser_placement and m.is_resolved and m.loser_id is not None:
                places.setdefault(m.loser_placement, m.loser_id)
        return places


# =============================================================================
# Stage configuration
# =============================================================================

def _require_count(name: str, value, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidStageConfigError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidStageConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _require_best_of(name: str, value) -> int:
    if isinstance(value, bool) or value not in VALID_BEST_OF:
        raise InvalidStageConfigError(f"{name} must be one of {VALID_BEST_OF}, got {value!r}")
    return value


@dataclass
class StageConfig:
    """
    One phase of a competition. Validated on construction so malformed
    numbers never reach a draw or a bracket build.
    """
    format: str
    best_of: int = 1
    final_best_of: Optional[int] = None
    group_count: int = 0
    advance_upper_per_group: int = 0
    advance_lower_per_group: int = 0
    advance_best_remaining: int = 0
    index: int = 1
    name: str = ""

    def __post_init__(self):
        if self.format not in STAGE_FORMATS:
            raise InvalidStageConfigError(f"Unknown stage format: {self.format!r}")
        _require_best_of("best_of", self.best_of)
        if self.final_best_of is not None:
            _require_best_of("final_best_of", self.final_best_of)
        _require_count("index", self.index, minimum=1)
        _require_count("group_count", self.group_count)
        _require_count("advance_upper_per_group", self.advance_upper_per_group)
        _require_count("advance_lower_per_group", self.advance_lower_per_group)
        _require_count("advance_best_remaining", self.advance_best_remaining)

        if self.format == FORMAT_ROUND_ROBIN and self.group_count < 1:
            raise InvalidStageConfigError("round_robin stages need at least one group")
        if self.group_count > MAX_GROUPS:
            raise InvalidStageConfigError(f"group_count must be <= {MAX_GROUPS}, got {self.group_count}")
        if self.format != FORMAT_ROUND_ROBIN:
            if self.group_count or self.advance_upper_per_group or self.advance_lower_per_group \
                    or self.advance_best_remaining:
                raise InvalidStageConfigError(
                    f"{self.format} stages do not take group or advancement counts"
                )

    @property
    def is_round_robin(self) -> bool:
        return self.format == FORMAT_ROUND_ROBIN

    @property
    def effective_group_count(self) -> int:
        return max(1, self.group_count)

    @property
    def finals_best_of(self) -> int:
        return self.final_best_of or self.best_of

    @property
    def has_lower_path(self) -> bool:
        return self.advance_lower_per_group > 0


def group_sizes(team_count: int, group_count: int) -> List[int]:
    """Sizes of groups filled round-robin: the first N % G groups hold one extra team."""
    base, extra = divmod(team_count, group_count)
    return [base + 1] * extra + [base] * (group_count - extra)


def upper_quota(config: StageConfig, group_size: int, base_size: int) -> int:
    """
    Upper-bracket advancers for a group. Groups holding base+1 teams send
    max(per_group, (base+1) - lower_per_group) so they do not under-advance.
    """
    if group_size == base_size + 1:
        return max(config.advance_upper_per_group, group_size - config.advance_lower_per_group)
    return config.advance_upper_per_group


def advancing_total(config: StageConfig, team_count: int) -> int:
    """Total teams leaving a round-robin stage for the next stage."""
    groups = config.effective_group_count
    base = team_count // groups
    upper = sum(upper_quota(config, size, base) for size in group_sizes(team_count, groups))
    lower = config.advance_lower_per_group * groups
    return upper + lower + config.advance_best_remaining


def validate_stage_plan(stages: Sequence[StageConfig], team_count: int) -> List[int]:
    """
    Check a multi-stage plan before any draw or build. Returns the number of
    teams entering each stage.
    """
    _require_count("team_count", team_count)
    if not stages:
        raise InvalidStageConfigError("At least one stage is required")

    entering: List[int] = []
    current = team_count
    for position, stage in enumerate(stages):
        entering.append(current)
        is_last = position == len(stages) - 1

        if stage.is_round_robin and stage.effective_group_count > max(current, 1):
            raise InvalidStageConfigError(
                f"Stage {stage.index}: {stage.effective_group_count} groups for {current} teams"
            )
        if is_last:
            break

        if not stage.is_round_robin:
            raise InvalidStageConfigError(
                f"Stage {stage.index}: only round-robin stages can feed a subsequent stage"
            )
        if stage.advance_upper_per_group < 1:
            raise InvalidStageConfigError(
                f"Stage {stage.index}: set how many teams advance per group"
            )
        total = advancing_total(stage, current)
        nxt = stages[position + 1]
        if nxt.format in ELIMINATION_FORMATS and total < 2:
            raise InvalidStageConfigError(
                f"Stage {stage.index}: at least 2 teams must advance to the next stage"
            )
        if total > current:
            raise InvalidStageConfigError(
                f"Stage {stage.index}: {total} advancing teams exceeds the {current} entering"
            )
        if stage.has_lower_path and nxt.format != FORMAT_DOUBLE_ELIMINATION:
            raise InvalidStageConfigError(
                f"Stage {stage.index}: lower-bracket advancement requires a double elimination next stage"
            )
        current = total

    return entering
