"""
Tests for the seeded random source and coin toss.
"""

import pytest

from app.services.random_source import RandomSource, coin_toss, generate_draw_seed


def test_generated_seed_is_32_hex_chars():
    seed = generate_draw_seed()
    assert len(seed) == 32
    int(seed, 16)


def test_same_seed_same_stream():
    a = RandomSource("fixed-seed")
    b = RandomSource("fixed-seed")
    assert [a.randbelow(1000) for _ in range(20)] == [b.randbelow(1000) for _ in range(20)]


def test_different_seeds_diverge():
    items = list(range(30))
    assert RandomSource("alpha").shuffle(items) != RandomSource("beta").shuffle(items)


def test_shuffle_is_a_permutation_and_leaves_input_alone():
    items = list(range(10))
    shuffled = RandomSource("perm").shuffle(items)
    assert sorted(shuffled) == items
    assert items == list(range(10))


def test_randbelow_stays_in_range():
    source = RandomSource("range")
    values = {source.randbelow(3) for _ in range(200)}
    assert values == {0, 1, 2}


def test_invalid_inputs_rejected():
    with pytest.raises(ValueError):
        RandomSource("   ")
    with pytest.raises(ValueError):
        RandomSource("x").randbelow(0)
    with pytest.raises(ValueError):
        RandomSource("x").choice([])


def test_coin_toss_is_reproducible_from_seed():
    first = coin_toss(1, 2, RandomSource("toss"))
    second = coin_toss(1, 2, RandomSource(first.seed))
    assert (first.winner_id, first.loser_id) == (second.winner_id, second.loser_id)
    assert {first.winner_id, first.loser_id} == {1, 2}


def test_coin_toss_without_source_records_fresh_seed():
    toss = coin_toss(5, 9)
    assert len(toss.seed) == 32
