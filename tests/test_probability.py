from __future__ import annotations

import sys
from fractions import Fraction
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from fair_dice import (  # noqa: E402
    DiceConfiguration,
    InvalidDiceConfigurationError,
    WinProbabilityModel,
)

DICE = [[2, 2, 4, 4, 9, 9], [6, 8, 1, 1, 8, 6], [7, 5, 3, 7, 5, 3]]


def test_dominating_die_always_wins() -> None:
    assert WinProbabilityModel.win_probability([2, 2, 4, 4, 9, 9], [1] * 6) == 1.0
    assert WinProbabilityModel.win_probability([1] * 6, [2, 2, 4, 4, 9, 9]) == 0.0


def test_equal_faces_never_win() -> None:
    assert WinProbabilityModel.win_probability([1] * 6, [1] * 6) == 0.0


def test_enumerated_fractions_for_sample_dice() -> None:
    assert WinProbabilityModel.win_fraction(DICE[0], DICE[1]) == Fraction(20, 36)
    assert WinProbabilityModel.win_fraction(DICE[1], DICE[0]) == Fraction(16, 36)
    assert round(WinProbabilityModel.win_probability(DICE[1], DICE[0]), 4) == 0.4444
    assert round(WinProbabilityModel.win_probability(DICE[0], DICE[1]), 4) == 0.5556


def test_non_transitive_cycle() -> None:
    p = WinProbabilityModel.win_probability
    assert p(DICE[0], DICE[1]) > 0.5
    assert p(DICE[1], DICE[2]) > 0.5
    assert p(DICE[2], DICE[0]) > 0.5


def test_matrix_shape_labels_and_cells() -> None:
    matrix = WinProbabilityModel.probability_matrix(DICE)
    assert len(matrix) == 3
    assert matrix.labels == ("2,2,4,4,9,9", "6,8,1,1,8,6", "7,5,3,7,5,3")
    for i in range(3):
        for j in range(3):
            if i != j:
                assert matrix.cell(i, j) == WinProbabilityModel.win_probability(DICE[i], DICE[j])
    assert matrix.rows()[0][1] == pytest.approx(20 / 36)


def test_matrix_diagonal_is_one_third() -> None:
    for configs in (DICE, [[1] * 6, [9] * 6], [[-3, 0, 0, 5, 5, 100]]):
        matrix = WinProbabilityModel.probability_matrix(configs)
        for i in range(len(configs)):
            assert matrix.cell(i, i) == 1 / 3


def test_ties_leave_probability_mass() -> None:
    a, b = [1, 2, 3, 4, 5, 6], [1, 2, 3, 4, 5, 6]
    matrix = WinProbabilityModel.probability_matrix([a, b])
    assert matrix.cell(0, 1) + matrix.cell(1, 0) == pytest.approx(30 / 36)


def test_configuration_accepts_negatives_and_repeats() -> None:
    die = DiceConfiguration((-1, -1, 0, 7, 3, 3))
    assert str(die) == "-1,-1,0,7,3,3"
    assert len(die) == 6
    assert die[3] == 7
    assert DiceConfiguration.of(die) is die


@pytest.mark.parametrize(
    "faces",
    [[1, 2, 3, 4, 5], [1, 2, 3, 4, 5, 6, 7], [1, 2, 3, 4, 5, 6.5], [1, 2, 3, 4, 5, True], 42, "123456"],
)
def test_malformed_configuration_fails_loudly(faces) -> None:
    with pytest.raises(InvalidDiceConfigurationError):
        WinProbabilityModel.win_probability(faces, [1] * 6)
