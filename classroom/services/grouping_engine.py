"""
Balanced Grouping Engine

Partitions a roster of students into small groups balanced by ability tier
(derived from pretest ranking) and gender.

Algorithm:
1. Tiering: rank by pretest score, top third High, bottom third Low,
   remainder Mid.
2. Slot planning: group capacities differ by at most one member.
3. Greedy distribution: tiers High -> Mid -> Low, genders interleaved within
   each tier; each student joins the open group with the fewest members of
   their tier, then of their gender, then the lowest index.
4. Refinement: swap same-tier students of opposite gender between groups
   while that strictly reduces gender imbalance.
5. Balance metrics per group and overall.

Pure and deterministic: identical input always yields identical membership.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from classroom.errors import (
    InsufficientRosterForAI,
    InsufficientRosterForManual,
    RosterTooLargeForManual,
    InvalidGroupCount,
)
from classroom.services.phases import Gender

logger = logging.getLogger(__name__)

ALGORITHM_VERSION = "1.0.0-tiered-greedy"

AI_MIN_ROSTER = 8
MANUAL_MIN_ROSTER = 3
MANUAL_MAX_ROSTER = 7
MAX_AI_GROUP_SIZE = 5


class GroupingMode(str, Enum):
    AI = "AI"
    MANUAL = "MANUAL"


class AbilityTier(str, Enum):
    HIGH = "HIGH"
    MID = "MID"
    LOW = "LOW"


TIER_ORDER: Tuple[AbilityTier, ...] = (AbilityTier.HIGH, AbilityTier.MID, AbilityTier.LOW)
GENDER_ORDER: Tuple[Gender, ...] = (Gender.FEMALE, Gender.MALE, Gender.OTHER)


@dataclass(frozen=True)
class RosterEntry:
    """Immutable snapshot of one student at grouping time"""
    student_id: str
    gender: Gender
    pretest_score: Optional[float]


@dataclass
class GroupingOutcome:
    """Result of one grouping computation"""
    mode: GroupingMode
    group_count: int
    groups: List[List[RosterEntry]]
    tiers: Dict[str, AbilityTier]
    metrics: Dict[str, Any] = field(default_factory=dict)
    algorithm_version: str = ALGORITHM_VERSION

    def assignments(self) -> Dict[str, int]:
        """student_id -> 1-based group number"""
        return {
            entry.student_id: index + 1
            for index, members in enumerate(self.groups)
            for entry in members
        }

    def membership(self) -> List[List[str]]:
        return [[entry.student_id for entry in members] for members in self.groups]


def plan_group_count(
    roster_size: int,
    mode: GroupingMode,
    requested_group_count: Optional[int] = None,
) -> int:
    """
    Validate roster size for the mode and decide how many groups to form.

    Raises:
        InsufficientRosterForAI, InsufficientRosterForManual,
        RosterTooLargeForManual, InvalidGroupCount
    """
    if mode is GroupingMode.AI:
        if roster_size < AI_MIN_ROSTER:
            raise InsufficientRosterForAI(AI_MIN_ROSTER, roster_size)

        if requested_group_count is None:
            # Targets 3-5 members per group
            return math.ceil(roster_size / MAX_AI_GROUP_SIZE)

        if (
            isinstance(requested_group_count, bool)
            or not isinstance(requested_group_count, int)
            or requested_group_count < 1
        ):
            raise InvalidGroupCount(requested_group_count, roster_size, "must be a positive integer")
        if requested_group_count > roster_size:
            raise InvalidGroupCount(
                requested_group_count, roster_size, "cannot exceed the number of students"
            )
        return requested_group_count

    if roster_size < MANUAL_MIN_ROSTER:
        raise InsufficientRosterForManual(MANUAL_MIN_ROSTER, roster_size)
    if roster_size > MANUAL_MAX_ROSTER:
        raise RosterTooLargeForManual(MANUAL_MAX_ROSTER, roster_size)
    if requested_group_count is not None:
        raise InvalidGroupCount(
            requested_group_count, roster_size, "group count applies to AI grouping only"
        )

    # Small classes: one H-M-L trio, otherwise two mentoring groups
    return 1 if roster_size == MANUAL_MIN_ROSTER else 2


def _ranking_key(entry: RosterEntry) -> Tuple[float, str]:
    score = entry.pretest_score if entry.pretest_score is not None else -1.0
    return (-score, entry.student_id)


def assign_tiers(roster: Sequence[RosterEntry]) -> Dict[str, AbilityTier]:
    """
    Split the ranked roster into thirds.

    High and Low each take n // 3 students; the remainder goes to Mid so
    small rosters never produce an empty High or Low tier by rounding.
    """
    ranked = sorted(roster, key=_ranking_key)
    band = len(ranked) // 3

    tiers: Dict[str, AbilityTier] = {}
    for position, entry in enumerate(ranked):
        if position < band:
            tiers[entry.student_id] = AbilityTier.HIGH
        elif position >= len(ranked) - band:
            tiers[entry.student_id] = AbilityTier.LOW
        else:
            tiers[entry.student_id] = AbilityTier.MID
    return tiers


def plan_capacities(roster_size: int, group_count: int) -> List[int]:
    """Group sizes differing by at most one; larger groups first"""
    base, extra = divmod(roster_size, group_count)
    return [base + 1 if index < extra else base for index in range(group_count)]


def interleave_by_gender(members: Sequence[RosterEntry]) -> List[RosterEntry]:
    """
    Alternate genders, largest bucket first.

    Members keep their ranking order inside each bucket.
    """
    buckets: Dict[Gender, List[RosterEntry]] = {}
    for entry in members:
        buckets.setdefault(entry.gender, []).append(entry)

    ordered = sorted(
        buckets.items(),
        key=lambda item: (-len(item[1]), GENDER_ORDER.index(item[0])),
    )

    interleaved: List[RosterEntry] = []
    longest = max((len(bucket) for _, bucket in ordered), default=0)
    for position in range(longest):
        for _, bucket in ordered:
            if position < len(bucket):
                interleaved.append(bucket[position])
    return interleaved


def _gender_surplus(members: Sequence[RosterEntry]) -> int:
    """Females minus males"""
    females = sum(1 for entry in members if entry.gender is Gender.FEMALE)
    males = sum(1 for entry in members if entry.gender is Gender.MALE)
    return females - males


def _find_swap(
    surplus_group: List[RosterEntry],
    deficit_group: List[RosterEntry],
    tiers: Dict[str, AbilityTier],
) -> Optional[Tuple[int, int]]:
    """First same-tier (female in surplus_group, male in deficit_group) pair"""
    for tier in TIER_ORDER:
        female = next(
            (i for i, e in enumerate(surplus_group)
             if e.gender is Gender.FEMALE and tiers[e.student_id] is tier),
            None,
        )
        male = next(
            (j for j, e in enumerate(deficit_group)
             if e.gender is Gender.MALE and tiers[e.student_id] is tier),
            None,
        )
        if female is not None and male is not None:
            return female, male
    return None


def refine_gender_balance(groups: List[List[RosterEntry]], tiers: Dict[str, AbilityTier]) -> int:
    """
    Swap same-tier female/male pairs between groups while it strictly helps.

    A swap moves the two groups' surpluses 2 closer together, so it only runs
    when they differ by 3 or more; the sum of squared surpluses decreases on
    every swap and the loop terminates. Returns the number of swaps made.
    """
    swaps = 0
    while True:
        surpluses = [_gender_surplus(members) for members in groups]
        swapped = False
        for a in range(len(groups)):
            for b in range(len(groups)):
                if a == b or surpluses[a] - surpluses[b] < 3:
                    continue
                pair = _find_swap(groups[a], groups[b], tiers)
                if pair is None:
                    continue
                i, j = pair
                groups[a][i], groups[b][j] = groups[b][j], groups[a][i]
                swaps += 1
                swapped = True
                break
            if swapped:
                break
        if not swapped:
            return swaps


def distribute(
    roster: Sequence[RosterEntry],
    tiers: Dict[str, AbilityTier],
    capacities: Sequence[int],
) -> List[List[RosterEntry]]:
    """Greedy tier-then-gender placement into fixed-capacity groups"""
    group_count = len(capacities)
    groups: List[List[RosterEntry]] = [[] for _ in range(group_count)]
    tier_counts = np.zeros((group_count, len(TIER_ORDER)), dtype=int)
    gender_counts = np.zeros((group_count, len(GENDER_ORDER)), dtype=int)

    ranked = sorted(roster, key=_ranking_key)

    for tier_index, tier in enumerate(TIER_ORDER):
        members = [entry for entry in ranked if tiers[entry.student_id] is tier]
        for entry in interleave_by_gender(members):
            gender_index = GENDER_ORDER.index(entry.gender)
            open_groups = [i for i in range(group_count) if len(groups[i]) < capacities[i]]
            target = min(
                open_groups,
                key=lambda i: (tier_counts[i, tier_index], gender_counts[i, gender_index], i),
            )
            groups[target].append(entry)
            tier_counts[target, tier_index] += 1
            gender_counts[target, gender_index] += 1

    return groups


def compute_balance_metrics(
    groups: Sequence[Sequence[RosterEntry]],
    tiers: Dict[str, AbilityTier],
) -> Dict[str, Any]:
    """
    Per-group tier/gender counts plus overall balance.

    balance_score is the largest spread (max - min across groups) of any
    gender's count; lower is better. A group is balanced when its female and
    male counts differ by at most one.
    """
    group_count = len(groups)
    tier_matrix = np.zeros((group_count, len(TIER_ORDER)), dtype=int)
    gender_matrix = np.zeros((group_count, len(GENDER_ORDER)), dtype=int)

    for g, members in enumerate(groups):
        for entry in members:
            tier_matrix[g, TIER_ORDER.index(tiers[entry.student_id])] += 1
            gender_matrix[g, GENDER_ORDER.index(entry.gender)] += 1

    female = GENDER_ORDER.index(Gender.FEMALE)
    male = GENDER_ORDER.index(Gender.MALE)
    differences = np.abs(gender_matrix[:, female] - gender_matrix[:, male])

    if group_count:
        spread = gender_matrix.max(axis=0) - gender_matrix.min(axis=0)
        balance_score = int(spread.max())
    else:
        balance_score = 0

    per_group = []
    for g, members in enumerate(groups):
        scores = [e.pretest_score for e in members if e.pretest_score is not None]
        per_group.append({
            "group_number": g + 1,
            "size": len(members),
            "tiers": {tier.value: int(tier_matrix[g, t]) for t, tier in enumerate(TIER_ORDER)},
            "genders": {gender.value: int(gender_matrix[g, i]) for i, gender in enumerate(GENDER_ORDER)},
            "gender_difference": int(differences[g]),
            "balanced": bool(differences[g] <= 1),
            "average_pretest": round(float(np.mean(scores)), 1) if scores else None,
        })

    return {
        "groups": per_group,
        "balance_score": balance_score,
        "balanced_groups": int(np.count_nonzero(differences <= 1)),
        "total_groups": group_count,
        "total_students": int(sum(len(members) for members in groups)),
    }


def compute_groups(
    roster: Sequence[RosterEntry],
    mode: GroupingMode,
    requested_group_count: Optional[int] = None,
) -> GroupingOutcome:
    """
    Partition the roster into balanced groups.

    Args:
        roster: Students who completed the pretest
        mode: AI (8+ students) or MANUAL (3-7 students)
        requested_group_count: AI only; defaults to groups of 3-5

    Returns:
        GroupingOutcome with membership and balance metrics
    """
    mode = GroupingMode(mode)
    group_count = plan_group_count(len(roster), mode, requested_group_count)

    tiers = assign_tiers(roster)
    capacities = plan_capacities(len(roster), group_count)
    groups = distribute(roster, tiers, capacities)
    swaps = refine_gender_balance(groups, tiers)
    metrics = compute_balance_metrics(groups, tiers)

    logger.debug(
        f"Computed {group_count} {mode.value} groups for {len(roster)} students "
        f"(balance_score={metrics['balance_score']}, swaps={swaps})"
    )

    return GroupingOutcome(
        mode=mode,
        group_count=group_count,
        groups=groups,
        tiers=tiers,
        metrics=metrics,
    )


def summarize_assignments(
    roster: Sequence[RosterEntry],
    assignments: Dict[str, int],
) -> GroupingOutcome:
    """
    Build an outcome from a teacher-supplied student -> group mapping.

    Tiers are ranked over the mapped students only; group_count is the
    highest group number used.
    """
    by_id = {entry.student_id: entry for entry in roster}
    mapped = [by_id[student_id] for student_id in sorted(assignments) if student_id in by_id]
    group_count = max(assignments.values(), default=0)

    groups: List[List[RosterEntry]] = [[] for _ in range(group_count)]
    for entry in sorted(mapped, key=_ranking_key):
        groups[assignments[entry.student_id] - 1].append(entry)

    tiers = assign_tiers(mapped)
    return GroupingOutcome(
        mode=GroupingMode.MANUAL,
        group_count=group_count,
        groups=groups,
        tiers=tiers,
        metrics=compute_balance_metrics(groups, tiers),
        algorithm_version="manual-assignment",
    )
