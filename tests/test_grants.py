"""Tests for state creation, XP grants, achievement batches and producer helpers."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from classworld.errors import WorldValidationError
from classworld.models import AchievementItem
from classworld.rules import COMPANION_REWARD_TYPE
from classworld.world import (
    get_or_create_state, grant_xp, grant_xp_to_state, grant_achievements,
    get_snapshot, set_overlay_enabled, select_image,
    award_attendance_for_date, award_assignment_submission,
    check_entry_achievements, process_login_streak, entry_achievement_items,
)

from tests.conftest import NOW


def items(*pairs):
    return [AchievementItem(achievement_id=a, reward_key=k) for a, k in pairs]


async def state_xp(store, state_id):
    return (await store.fetch_state_by_id(state_id)).xp


# ============================================================================
# State access
# ============================================================================


class TestGetOrCreate:

    async def test_creates_with_triggers_and_base_unlock(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)

        assert state.xp == 0
        assert state.next_daily_spawn_at == datetime(2025, 1, 16, 11, 0, tzinfo=timezone.utc)
        assert state.next_weekly_eval_at == datetime(2025, 1, 17, 22, 0, tzinfo=timezone.utc)
        assert await store.fetch_unlocks(state.id) == [0]

    async def test_returns_existing(self, store, config):
        first = await get_or_create_state(store, "u1", "c1", NOW, config)
        second = await get_or_create_state(store, "u1", "c1", NOW, config)
        assert first.id == second.id

    async def test_concurrent_creation_yields_one_state(self, store, config):
        states = await asyncio.gather(*(
            get_or_create_state(store, "u1", "c1", NOW, config) for _ in range(5)
        ))

        assert len({state.id for state in states}) == 1
        assert len(store.states) == 1


# ============================================================================
# grant_xp
# ============================================================================


class TestGrantXp:

    async def test_daily_cap_blocks_second_login(self, store, config):
        first = await grant_xp(store, "u1", "c1", "daily_login", now=NOW, config=config)
        second = await grant_xp(store, "u1", "c1", "daily_login", now=NOW, config=config)

        assert first.granted and first.xp_awarded == 10
        assert not second.granted and second.xp_awarded == 0
        state = await store.fetch_state("u1", "c1")
        assert state.xp == 10
        assert len(await store.fetch_xp_events(state.id, "daily_login")) == 1

    async def test_daily_cap_resets_next_local_day(self, store, clock, config):
        await grant_xp(store, "u1", "c1", "daily_login", now=NOW, config=config)
        tomorrow = clock.advance(days=1)
        result = await grant_xp(store, "u1", "c1", "daily_login", now=tomorrow, config=config)
        assert result.granted

    async def test_capped_insert_is_clamped_to_remaining(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)
        since = datetime(2025, 1, 15, 5, 0, tzinfo=timezone.utc)

        first = await store.insert_xp_event(state.id, "daily_login", 7, daily_cap=10, since=since)
        second = await store.insert_xp_event(state.id, "daily_login", 7, daily_cap=10, since=since)
        third = await store.insert_xp_event(state.id, "daily_login", 7, daily_cap=10, since=since)

        assert (first, second, third) == (7, 3, 0)
        assert await store.sum_xp_since(state.id, "daily_login", since) == 10

    async def test_single_instance_per_metadata_key(self, store, config):
        meta = {"assignment_id": "a1"}
        first = await grant_xp(store, "u1", "c1", "assignment_complete", meta, now=NOW, config=config)
        again = await grant_xp(store, "u1", "c1", "assignment_complete", meta, now=NOW, config=config)
        other = await grant_xp(
            store, "u1", "c1", "assignment_complete", {"assignment_id": "a2"}, now=NOW, config=config
        )

        assert first.xp_awarded == 15
        assert not again.granted
        assert other.granted
        assert (await store.fetch_state("u1", "c1")).xp == 30

    async def test_metadata_key_matches_across_value_types(self, store, config):
        first = await grant_xp(
            store, "u1", "c1", "assignment_complete", {"assignment_id": 5}, now=NOW, config=config
        )
        again = await grant_xp(
            store, "u1", "c1", "assignment_complete", {"assignment_id": "5"}, now=NOW, config=config
        )

        assert first.granted
        assert not again.granted
        assert (await store.fetch_state("u1", "c1")).xp == 15

    async def test_concurrent_capped_grants_stay_within_cap(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)

        results = await asyncio.gather(*(
            grant_xp(store, "u1", "c1", "daily_login", now=NOW, config=config) for _ in range(10)
        ))

        assert sum(1 for result in results if result.granted) == 1
        assert sum(result.xp_awarded for result in results) == 10
        assert await state_xp(store, state.id) == 10
        assert len(await store.fetch_xp_events(state.id, "daily_login")) == 1

    async def test_unknown_source_rejected_without_writes(self, store, config):
        with pytest.raises(WorldValidationError):
            await grant_xp(store, "u1", "c1", "free_xp", now=NOW, config=config)
        assert store.states == {}

    async def test_missing_unique_metadata_rejected(self, store, config):
        with pytest.raises(WorldValidationError):
            await grant_xp(store, "u1", "c1", "assignment_complete", now=NOW, config=config)

    async def test_concurrent_grants_do_not_lose_updates(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)

        await asyncio.gather(
            grant_xp_to_state(store, state, "weekly_bonus", {"week_start": "w1"}, amount=5, now=NOW, config=config),
            grant_xp_to_state(store, state, "weekly_bonus", {"week_start": "w2"}, amount=7, now=NOW, config=config),
        )

        assert await state_xp(store, state.id) == 12

    async def test_many_concurrent_increments(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)
        await asyncio.gather(*(store.increment_xp(state.id, 1) for _ in range(50)))
        assert await state_xp(store, state.id) == 50

    async def test_crossing_level_boundary(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)
        await store.increment_xp(state.id, 95)

        result = await grant_xp_to_state(
            store, state, "weekly_bonus", {"week_start": "w1"}, amount=10, now=NOW, config=config
        )

        assert result.new_level == 1
        assert result.new_unlocks == []
        assert await state_xp(store, state.id) == 105

    async def test_reaching_unlock_threshold_returns_new_image(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)
        await store.increment_xp(state.id, 190)

        result = await grant_xp_to_state(
            store, state, "weekly_bonus", {"week_start": "w1"}, amount=10, now=NOW, config=config
        )

        assert result.new_level == 2
        assert result.new_unlocks == [1]
        assert await store.fetch_unlocks(state.id) == [0, 1]

    async def test_ledger_written_before_increment(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)
        seen = []
        original = store.increment_xp

        async def recording_increment(state_id, amount):
            seen.append(len(store.xp_events))
            return await original(state_id, amount)

        store.increment_xp = recording_increment
        await grant_xp_to_state(store, state, "daily_login", now=NOW, config=config)

        assert seen == [1]


# ============================================================================
# grant_achievements
# ============================================================================


class TestGrantAchievements:

    async def test_same_reward_key_granted_once(self, store, config):
        first = await grant_achievements(store, "u1", "c1", items(("streak_3", "cycle:0")), now=NOW, config=config)
        second = await grant_achievements(store, "u1", "c1", items(("streak_3", "cycle:0")), now=NOW, config=config)

        assert first.total_xp_awarded == 10
        assert second.total_xp_awarded == 0
        assert second.achievements == []
        state = await store.fetch_state("u1", "c1")
        assert state.xp == 10
        assert len(store.reward_grants) == 1
        assert len(await store.fetch_xp_events(state.id, "streak_3")) == 1

    async def test_duplicates_inside_batch_skipped(self, store, config):
        result = await grant_achievements(
            store, "u1", "c1",
            items(("streak_3", "cycle:0"), ("streak_3", "cycle:0"), ("streak_5", "cycle:0")),
            now=NOW, config=config,
        )
        assert result.total_xp_awarded == 30
        assert [grant.achievement_id for grant in result.achievements] == ["streak_3", "streak_5"]

    async def test_single_increment_per_batch(self, store, config):
        await get_or_create_state(store, "u1", "c1", NOW, config)
        calls = []
        original = store.increment_xp

        async def counting_increment(state_id, amount):
            calls.append(amount)
            return await original(state_id, amount)

        store.increment_xp = counting_increment
        await grant_achievements(
            store, "u1", "c1",
            items(("streak_3", "cycle:0"), ("streak_5", "cycle:0"), ("full_week", "week:2025-W02")),
            now=NOW, config=config,
        )

        assert calls == [55]

    async def test_unknown_achievement_rejects_whole_batch(self, store, config):
        with pytest.raises(WorldValidationError):
            await grant_achievements(
                store, "u1", "c1", items(("streak_3", "cycle:0"), ("bogus", "x")), now=NOW, config=config
            )
        assert store.reward_grants == {}
        assert store.states == {}


# ============================================================================
# Snapshot and preferences
# ============================================================================


class TestSnapshot:

    async def test_snapshot_backfills_missing_triggers(self, store, config):
        state = await store.insert_state("u1", "c1", None, None)

        snapshot = await get_snapshot(store, "u1", "c1", now=NOW, config=config)

        assert snapshot.world.id == state.id
        assert snapshot.world.next_daily_spawn_at is not None
        assert snapshot.world.next_weekly_eval_at is not None
        assert snapshot.world.level == 0
        assert snapshot.world.next_unlock_level == 2
        assert snapshot.world.unlocks == [0]
        assert snapshot.daily_event is None
        assert snapshot.latest_weekly_result is None

    async def test_overlay_toggle(self, store, config):
        snapshot = await set_overlay_enabled(store, "u1", "c1", False, now=NOW, config=config)
        assert snapshot.world.overlay_enabled is False

    async def test_select_locked_image_rejected(self, store, config):
        with pytest.raises(WorldValidationError, match="not unlocked"):
            await select_image(store, "u1", "c1", 1, now=NOW, config=config)

    async def test_select_out_of_range_rejected(self, store, config):
        with pytest.raises(WorldValidationError):
            await select_image(store, "u1", "c1", 99, now=NOW, config=config)

    async def test_select_unlocked_image(self, store, config):
        state = await get_or_create_state(store, "u1", "c1", NOW, config)
        await store.insert_unlocks(state.id, [1])

        view = await select_image(store, "u1", "c1", 1, now=NOW, config=config)

        assert view.selected_image == 1
        assert (await store.fetch_state_by_id(state.id)).selected_image == 1


# ============================================================================
# Producer helpers
# ============================================================================


class TestProducerHelpers:

    async def test_attendance_awarded_once_per_date(self, store, config):
        first = await award_attendance_for_date(store, "u1", "c1", date(2025, 1, 15), now=NOW, config=config)
        again = await award_attendance_for_date(store, "u1", "c1", date(2025, 1, 15), now=NOW, config=config)

        assert first.xp_awarded == 5
        assert not again.granted
        assert (await store.fetch_state("u1", "c1")).xp == 5

    async def test_submission_on_time_and_late(self, store, config):
        on_time = await award_assignment_submission(store, "u1", "c1", "a1", True, now=NOW, config=config)
        repeat = await award_assignment_submission(store, "u1", "c1", "a1", True, now=NOW, config=config)
        late = await award_assignment_submission(store, "u1", "c1", "a2", False, now=NOW, config=config)

        assert on_time.xp_awarded == 8
        assert repeat.xp_awarded == 0
        assert late.xp_awarded == 2

    async def test_entry_achievements_for_full_week(self, store, signals, config):
        week = [date(2025, 1, day) for day in range(6, 11)]
        signals.add_class_days("c1", week)
        signals.add_entries("u1", "c1", week)

        first = await check_entry_achievements(store, signals, "u1", "c1", now=NOW, config=config)
        second = await check_entry_achievements(store, signals, "u1", "c1", now=NOW, config=config)

        assert sorted(grant.achievement_id for grant in first.achievements) == ["full_week", "streak_3", "streak_5"]
        assert first.total_xp_awarded == 55
        assert second.total_xp_awarded == 0

    def test_streak_cycles_restart_after_ten(self):
        days = [date(2025, 1, 1 + offset) for offset in range(13)]
        found = entry_achievement_items(days, set(days), date(2025, 2, 1))
        keys = {(item.achievement_id, item.reward_key) for item in found}

        assert ("streak_10", "cycle:0") in keys
        assert ("streak_3", "cycle:1") in keys
        assert ("streak_5", "cycle:1") not in keys

    def test_missed_day_breaks_full_week(self):
        week = [date(2025, 1, day) for day in range(6, 11)]
        attended = set(week) - {date(2025, 1, 8)}
        found = entry_achievement_items(week, attended, date(2025, 1, 15))
        assert all(item.achievement_id != "full_week" for item in found)

    def test_unfinished_week_not_counted(self):
        week = [date(2025, 1, day) for day in range(13, 18)]
        found = entry_achievement_items(week, set(week), date(2025, 1, 15))
        assert all(item.achievement_id != "full_week" for item in found)

    async def test_login_streak_progression(self, store, signals, config):
        signals.enroll("u1", "c1")

        def at(day):
            return datetime(2025, 1, day, 15, 0, tzinfo=timezone.utc)

        [state] = await process_login_streak(store, signals, "u1", now=at(13), config=config)
        assert state.streak_days == 1
        [state] = await process_login_streak(store, signals, "u1", now=at(13), config=config)
        assert state.streak_days == 1
        await process_login_streak(store, signals, "u1", now=at(14), config=config)
        [state] = await process_login_streak(store, signals, "u1", now=at(15), config=config)

        assert state.streak_days == 3
        assert state.last_login_day == date(2025, 1, 15)
        assert (state.id, COMPANION_REWARD_TYPE, "streak_3") in store.reward_grants
        assert await store.fetch_xp_events(state.id) == []

        [state] = await process_login_streak(store, signals, "u1", now=at(17), config=config)
        assert state.streak_days == 1
