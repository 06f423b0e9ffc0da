"""
Unit tests for the balanced grouping engine

Tests preconditions, tiering, slot planning, gender balance, refinement
swaps, metrics and determinism.
"""
import random

import pytest

from classroom.errors import (
    InsufficientRosterForAI,
    InsufficientRosterForManual,
    InvalidGroupCount,
    RosterTooLargeForManual,
)
from classroom.services.grouping_engine import (
    AbilityTier,
    GroupingMode,
    RosterEntry,
    assign_tiers,
    compute_balance_metrics,
    compute_groups,
    interleave_by_gender,
    plan_capacities,
    plan_group_count,
    refine_gender_balance,
    summarize_assignments,
)
from classroom.services.phases import Gender

F, M, O = Gender.FEMALE, Gender.MALE, Gender.OTHER


def roster_of(rows):
    """rows: list of (student_id, gender, score)"""
    return [RosterEntry(student_id=s, gender=g, pretest_score=score) for s, g, score in rows]


def random_roster(n, seed):
    rng = random.Random(seed)
    return [
        RosterEntry(
            student_id=f"st-{i:03d}",
            gender=rng.choice([F, M]),
            pretest_score=round(rng.uniform(0, 100), 1),
        )
        for i in range(n)
    ]


def even_split_roster(n, seed):
    """n // 2 female and n // 2 male students in shuffled order with distinct scores"""
    rng = random.Random(seed)
    genders = [F] * (n // 2) + [M] * (n // 2)
    rng.shuffle(genders)
    scores = rng.sample(range(1000), n)
    return [
        RosterEntry(student_id=f"st-{i:03d}", gender=gender, pretest_score=score / 10)
        for i, (gender, score) in enumerate(zip(genders, scores))
    ]


NINE = roster_of([
    ("s1", F, 90), ("s2", M, 85), ("s3", F, 80),
    ("s4", M, 75), ("s5", F, 70), ("s6", M, 65),
    ("s7", F, 60), ("s8", M, 55), ("s9", F, 50),
])


class TestPreconditions:
    """Roster size and group count validation"""

    def test_ai_needs_eight_students(self):
        with pytest.raises(InsufficientRosterForAI) as exc:
            compute_groups(random_roster(7, 1), GroupingMode.AI)
        assert exc.value.details == {"minimum": 8, "current": 7}

    def test_manual_rejects_eight_students_naming_limit(self):
        with pytest.raises(RosterTooLargeForManual) as exc:
            compute_groups(random_roster(8, 1), GroupingMode.MANUAL)
        assert exc.value.details["maximum"] == 7
        assert exc.value.details["current"] == 8

    def test_manual_needs_three_students(self):
        with pytest.raises(InsufficientRosterForManual) as exc:
            compute_groups(random_roster(2, 1), GroupingMode.MANUAL)
        assert exc.value.details == {"minimum": 3, "current": 2}

    @pytest.mark.parametrize("requested", [0, -1, 13, True, "3", 2.5])
    def test_invalid_requested_group_count(self, requested):
        with pytest.raises(InvalidGroupCount):
            plan_group_count(12, GroupingMode.AI, requested)

    def test_group_count_not_accepted_for_manual(self):
        with pytest.raises(InvalidGroupCount):
            plan_group_count(5, GroupingMode.MANUAL, 2)

    @pytest.mark.parametrize("n,expected", [(8, 2), (10, 2), (11, 3), (15, 3), (24, 5), (40, 8)])
    def test_default_ai_group_count(self, n, expected):
        assert plan_group_count(n, GroupingMode.AI) == expected

    @pytest.mark.parametrize("n,expected", [(3, 1), (4, 2), (7, 2)])
    def test_manual_group_count(self, n, expected):
        assert plan_group_count(n, GroupingMode.MANUAL) == expected

    def test_mode_accepts_string(self):
        outcome = compute_groups(NINE, "AI", 3)
        assert outcome.mode is GroupingMode.AI


class TestTiering:

    def test_thirds_for_nine(self):
        tiers = assign_tiers(NINE)
        assert [tiers[s] for s in ("s1", "s2", "s3")] == [AbilityTier.HIGH] * 3
        assert [tiers[s] for s in ("s4", "s5", "s6")] == [AbilityTier.MID] * 3
        assert [tiers[s] for s in ("s7", "s8", "s9")] == [AbilityTier.LOW] * 3

    def test_remainder_goes_to_mid(self):
        tiers = assign_tiers(random_roster(8, 3))
        counts = {tier: list(tiers.values()).count(tier) for tier in AbilityTier}
        assert counts == {AbilityTier.HIGH: 2, AbilityTier.MID: 4, AbilityTier.LOW: 2}

    def test_score_ties_broken_by_student_id(self):
        tied = roster_of([("b", F, 80), ("a", M, 80), ("c", F, 80)])
        tiers = assign_tiers(tied)
        assert tiers == {"a": AbilityTier.HIGH, "b": AbilityTier.MID, "c": AbilityTier.LOW}


class TestSlotPlanning:

    def test_capacities_differ_by_at_most_one(self):
        assert plan_capacities(24, 5) == [5, 5, 5, 5, 4]
        assert plan_capacities(9, 3) == [3, 3, 3]
        assert plan_capacities(10, 4) == [3, 3, 2, 2]

    def test_interleave_starts_with_larger_bucket(self):
        members = roster_of([("m1", M, 90), ("f1", F, 85), ("m2", M, 80)])
        assert [e.student_id for e in interleave_by_gender(members)] == ["m1", "f1", "m2"]


class TestNineStudentScenario:
    """5F/4M, evenly spread scores, AI with three groups"""

    def test_three_groups_of_three(self):
        outcome = compute_groups(NINE, GroupingMode.AI, 3)

        assert outcome.group_count == 3
        assert [len(g) for g in outcome.groups] == [3, 3, 3]
        assert outcome.membership() == [["s1", "s4", "s7"], ["s2", "s5", "s8"], ["s3", "s6", "s9"]]

    def test_one_of_each_tier_per_group(self):
        outcome = compute_groups(NINE, GroupingMode.AI, 3)
        for group in outcome.metrics["groups"]:
            assert group["tiers"] == {"HIGH": 1, "MID": 1, "LOW": 1}

    def test_gender_difference_at_most_one(self):
        outcome = compute_groups(NINE, GroupingMode.AI, 3)

        assert all(g["gender_difference"] <= 1 for g in outcome.metrics["groups"])
        assert outcome.metrics["balanced_groups"] == 3
        assert outcome.metrics["balance_score"] == 1

    def test_reproducible(self):
        first = compute_groups(NINE, GroupingMode.AI, 3)
        second = compute_groups(list(reversed(NINE)), GroupingMode.AI, 3)
        assert first.assignments() == second.assignments()


class TestBalance:

    def test_even_split_is_perfectly_balanced(self):
        roster = roster_of([
            ("a1", F, 95), ("a2", F, 90), ("a3", M, 85), ("a4", M, 80),
            ("a5", M, 75), ("a6", F, 70), ("a7", F, 65), ("a8", M, 60),
        ])
        outcome = compute_groups(roster, GroupingMode.AI)

        assert outcome.membership() == [["a1", "a3", "a5", "a7"], ["a2", "a6", "a4", "a8"]]
        assert [g["genders"]["FEMALE"] for g in outcome.metrics["groups"]] == [2, 2]
        assert outcome.metrics["balance_score"] == 0

    def test_refinement_swaps_same_tier_pair(self):
        groups = [
            [RosterEntry("fh", F, 90), RosterEntry("fl", F, 40)],
            [RosterEntry("mh", M, 88), RosterEntry("ml", M, 42)],
        ]
        tiers = {"fh": AbilityTier.HIGH, "mh": AbilityTier.HIGH, "fl": AbilityTier.LOW, "ml": AbilityTier.LOW}

        swaps = refine_gender_balance(groups, tiers)

        assert swaps == 1
        assert [e.student_id for e in groups[0]] == ["mh", "fl"]
        assert [e.student_id for e in groups[1]] == ["fh", "ml"]

    def test_refinement_never_crosses_tiers(self):
        groups = [
            [RosterEntry("fh", F, 90), RosterEntry("fh2", F, 85)],
            [RosterEntry("ml", M, 40), RosterEntry("ml2", M, 35)],
        ]
        tiers = {"fh": AbilityTier.HIGH, "fh2": AbilityTier.HIGH, "ml": AbilityTier.LOW, "ml2": AbilityTier.LOW}

        assert refine_gender_balance(groups, tiers) == 0

    def test_other_gender_counted(self):
        roster = roster_of([("o1", O, 80), ("f1", F, 70), ("m1", M, 60)])
        outcome = compute_groups(roster, GroupingMode.MANUAL)

        assert outcome.group_count == 1
        assert outcome.metrics["groups"][0]["genders"] == {"FEMALE": 1, "MALE": 1, "OTHER": 1}
        assert outcome.metrics["groups"][0]["tiers"] == {"HIGH": 1, "MID": 1, "LOW": 1}

    @pytest.mark.parametrize("n", [8, 10, 12, 14, 16, 18, 20, 22, 24])
    @pytest.mark.parametrize("group_count", [None, 2, 3, 4])
    def test_even_split_keeps_every_group_within_one(self, n, group_count):
        for seed in range(30):
            outcome = compute_groups(even_split_roster(n, seed), GroupingMode.AI, group_count)

            differences = [g["gender_difference"] for g in outcome.metrics["groups"]]
            assert max(differences) <= 1, f"n={n} seed={seed} groups={outcome.membership()}"
            assert outcome.metrics["balanced_groups"] == outcome.group_count


class TestInvariants:
    """Properties that hold for any roster"""

    @pytest.mark.parametrize("n", [8, 9, 13, 17, 24, 31])
    def test_every_student_placed_once_and_sizes_within_one(self, n):
        roster = random_roster(n, seed=n)
        outcome = compute_groups(roster, GroupingMode.AI)

        sizes = [len(g) for g in outcome.groups]
        assert max(sizes) - min(sizes) <= 1
        assert min(sizes) >= 1
        assert sorted(outcome.assignments()) == sorted(e.student_id for e in roster)
        assert set(outcome.assignments().values()) == set(range(1, outcome.group_count + 1))

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_deterministic_for_any_input_order(self, seed):
        roster = random_roster(20, seed)
        shuffled = list(roster)
        random.Random(seed + 100).shuffle(shuffled)

        assert compute_groups(roster, GroupingMode.AI, 4).membership() == \
            compute_groups(shuffled, GroupingMode.AI, 4).membership()

    def test_metrics_are_plain_python_types(self):
        metrics = compute_groups(random_roster(12, 9), GroupingMode.AI).metrics
        assert type(metrics["balance_score"]) is int
        assert type(metrics["groups"][0]["balanced"]) is bool


class TestManualSummary:

    def test_summarize_teacher_mapping(self):
        roster = roster_of([("a", F, 90), ("b", M, 70), ("c", F, 50), ("d", M, 30)])
        outcome = summarize_assignments(roster, {"a": 1, "b": 2, "c": 2})

        assert outcome.mode is GroupingMode.MANUAL
        assert outcome.group_count == 2
        assert outcome.assignments() == {"a": 1, "b": 2, "c": 2}
        assert outcome.metrics["total_students"] == 3

    def test_empty_mapping_has_no_groups(self):
        outcome = summarize_assignments(roster_of([("a", F, 90)]), {})
        assert outcome.group_count == 0
        assert outcome.metrics["balance_score"] == 0

    def test_metrics_skip_missing_scores(self):
        entries = [[RosterEntry("x", F, None), RosterEntry("y", M, 80)]]
        metrics = compute_balance_metrics(entries, {"x": AbilityTier.LOW, "y": AbilityTier.HIGH})
        assert metrics["groups"][0]["average_pretest"] == 80.0
