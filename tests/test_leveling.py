"""Tests for the pure leveling functions."""

from classworld.leveling import (
    calculate_level, calculate_level_progress, calculate_level_progress_percent,
    get_unlocked_image_indices, detect_new_unlocks, get_next_unlock_level, is_valid_image_index,
)


class TestLevel:

    def test_level_boundaries(self):
        assert calculate_level(0) == 0
        assert calculate_level(99) == 0
        assert calculate_level(100) == 1
        assert calculate_level(250) == 2

    def test_level_is_monotonic_and_progress_in_range(self):
        previous = 0
        for xp in range(0, 1500, 7):
            level = calculate_level(xp)
            assert level >= previous
            assert 0 <= calculate_level_progress(xp) < 100
            previous = level

    def test_custom_xp_per_level(self):
        assert calculate_level(95, 50) == 1
        assert calculate_level_progress(95, 50) == 45

    def test_progress_percent(self):
        assert calculate_level_progress_percent(150) == 50
        assert calculate_level_progress_percent(199) == 99


class TestUnlocks:

    def test_base_image_at_level_zero(self):
        assert get_unlocked_image_indices(0) == [0]

    def test_every_second_level_unlocks_an_image(self):
        assert get_unlocked_image_indices(4) == [0, 1, 2]
        assert get_unlocked_image_indices(5) == [0, 1, 2]
        assert get_unlocked_image_indices(20) == list(range(11))

    def test_new_unlocks_disjoint_from_existing(self):
        new = detect_new_unlocks([0, 2], 6)
        assert new == [1, 3]
        assert not set(new) & {0, 2}

    def test_new_unlocks_never_exceed_level(self):
        for index in detect_new_unlocks([], 7):
            assert index * 2 <= 7

    def test_new_unlocks_idempotent_after_merge(self):
        existing = [0]
        new = detect_new_unlocks(existing, 10)
        assert detect_new_unlocks(existing + new, 10) == []

    def test_custom_threshold_at_level_one(self):
        thresholds = {0: 0, 1: 1, 2: 3}
        assert detect_new_unlocks([0], 1, thresholds) == [1]

    def test_next_unlock_level(self):
        assert get_next_unlock_level(0) == 2
        assert get_next_unlock_level(3) == 4
        assert get_next_unlock_level(20) is None

    def test_image_index_validity(self):
        assert is_valid_image_index(0)
        assert is_valid_image_index(10)
        assert not is_valid_image_index(11)
        assert not is_valid_image_index(-1)
