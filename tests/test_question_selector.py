"""
Question pool selection: LO coverage, difficulty budgets and seeded draws.
"""

from collections import Counter

import pytest

from app.core.exceptions import InsufficientQuestions, InvalidRatio, ValidationError
from app.models.question import LEVEL_EASY, LEVEL_HARD, LEVEL_MEDIUM
from app.services.question_selector import QuestionSelector, level_budgets


@pytest.fixture
def course(factory):
    return factory.course()


def _bank(factory, course, spec):
    """spec: {lo_name: {"easy": n, "medium": n, "hard": n}}"""
    los = {}
    for lo_name, levels in spec.items():
        lo = factory.lo(course, lo_name)
        los[lo_name] = lo
        for difficulty, count in levels.items():
            for _ in range(count):
                factory.question(lo, difficulty)
    return los


def test_two_los_with_uneven_pools(db, factory, course):
    los = _bank(factory, course, {"LO1": {"easy": 3}, "LO2": {"medium": 1}})

    selected = QuestionSelector(db).select_questions(
        [los["LO1"].id, los["LO2"].id], 4, {"easy": 50, "medium": 25, "hard": 25}, seed=7
    )

    assert len(selected) == 4
    assert len({q.id for q in selected}) == 4
    assert any(q.lo_id == los["LO2"].id and q.level_id == LEVEL_MEDIUM for q in selected)


def test_every_lo_is_covered(db, factory, course):
    los = _bank(
        factory,
        course,
        {
            "A": {"easy": 4, "hard": 2},
            "B": {"medium": 3},
            "C": {"hard": 3},
        },
    )

    selected = QuestionSelector(db).select_questions(
        [lo.id for lo in los.values()], 6, {"easy": 34, "medium": 33, "hard": 33}, seed=1
    )

    assert {q.lo_id for q in selected} == {lo.id for lo in los.values()}
    assert len(selected) == 6


def test_ratio_is_respected_when_pool_is_rich(db, factory, course):
    los = _bank(
        factory,
        course,
        {"A": {"easy": 10, "medium": 10, "hard": 10}, "B": {"easy": 10, "medium": 10, "hard": 10}},
    )

    selected = QuestionSelector(db).select_questions(
        [los["A"].id, los["B"].id], 10, {"easy": 50, "medium": 30, "hard": 20}, seed=3
    )

    counts = Counter(q.level_id for q in selected)
    assert counts[LEVEL_EASY] == 5
    assert counts[LEVEL_MEDIUM] == 3
    assert counts[LEVEL_HARD] == 2


def test_same_seed_gives_same_selection(db, factory, course):
    los = _bank(factory, course, {"A": {"easy": 6, "medium": 6, "hard": 6}})
    selector = QuestionSelector(db)
    ratio = {"easy": 40, "medium": 40, "hard": 20}

    first = selector.select_questions([los["A"].id], 5, ratio, seed=42)
    second = selector.select_questions([los["A"].id], 5, ratio, seed=42)

    assert [q.id for q in first] == [q.id for q in second]


def test_los_are_downsampled_when_more_than_total(db, factory, course):
    los = _bank(factory, course, {f"LO{i}": {"easy": 1} for i in range(5)})

    selected = QuestionSelector(db).select_questions(
        [lo.id for lo in los.values()], 3, {"easy": 100, "medium": 0, "hard": 0}, seed=9
    )

    assert len(selected) == 3
    assert len({q.lo_id for q in selected}) == 3


def test_shortfall_is_filled_from_other_levels(db, factory, course):
    los = _bank(factory, course, {"A": {"easy": 2, "medium": 4}})

    selected = QuestionSelector(db).select_questions(
        [los["A"].id], 4, {"easy": 0, "medium": 0, "hard": 100}, seed=5
    )

    assert len(selected) == 4
    assert LEVEL_HARD not in {q.level_id for q in selected}


def test_lo_without_questions_fails(db, factory, course):
    los = _bank(factory, course, {"A": {"easy": 3}})
    empty = factory.lo(course, "Empty")

    with pytest.raises(InsufficientQuestions) as exc:
        QuestionSelector(db).select_questions(
            [los["A"].id, empty.id], 2, {"easy": 100, "medium": 0, "hard": 0}
        )

    assert exc.value.lo_id == empty.id


def test_not_enough_questions_overall(db, factory, course):
    los = _bank(factory, course, {"A": {"easy": 2}})

    with pytest.raises(InsufficientQuestions):
        QuestionSelector(db).select_questions(
            [los["A"].id], 5, {"easy": 100, "medium": 0, "hard": 0}
        )


def test_type_filter_limits_the_pool(db, factory, course):
    lo = factory.lo(course, "Code")
    factory.question(lo, "easy", question_type=1)
    code = factory.question(lo, "easy", question_type=4)

    selected = QuestionSelector(db).select_questions(
        [lo.id], 1, {"easy": 100, "medium": 0, "hard": 0}, type_filter=4
    )

    assert [q.id for q in selected] == [code.id]


@pytest.mark.parametrize(
    "ratio",
    [
        {"easy": 50, "medium": 30, "hard": 30},
        {"easy": -10, "medium": 60, "hard": 50},
        {"easy": "lots", "medium": 0, "hard": 0},
        [50, 25, 25],
    ],
)
def test_invalid_ratio_is_rejected(db, factory, course, ratio):
    los = _bank(factory, course, {"A": {"easy": 3}})

    with pytest.raises(InvalidRatio):
        QuestionSelector(db).select_questions([los["A"].id], 2, ratio)


def test_bad_arguments(db):
    selector = QuestionSelector(db)
    ratio = {"easy": 100, "medium": 0, "hard": 0}

    with pytest.raises(ValidationError):
        selector.select_questions([], 3, ratio)
    with pytest.raises(ValidationError):
        selector.select_questions([1], 0, ratio)


def test_level_budgets_always_sum_to_total():
    for total in range(1, 12):
        budgets = level_budgets(total, {"easy": 33.5, "medium": 33.5, "hard": 33})
        assert sum(budgets.values()) == total
        assert all(v >= 0 for v in budgets.values())


def test_derive_ratio(db, factory, course):
    lo = factory.lo(course)
    questions = [
        factory.question(lo, "easy"),
        factory.question(lo, "easy"),
        factory.question(lo, "medium"),
    ]

    ratio = QuestionSelector(db).derive_ratio(questions)

    assert ratio == {"easy": 67, "medium": 33, "hard": 0}
    assert sum(ratio.values()) == 100


def test_derive_ratio_needs_questions(db):
    with pytest.raises(ValidationError):
        QuestionSelector(db).derive_ratio([])
