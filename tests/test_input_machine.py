from collections import deque

import pytest

from tugofwar.services.input_machine import InputStateMachine, normalize_key


def joined(rules, rng, team="right", queue="FDKJ"):
    machine = InputStateMachine(rules, rng)
    machine.join(team)
    machine.queue = deque(queue)
    return machine


def wrong_key(machine):
    return next(k for k in machine.rules.alphabet if k != machine.head)


def state_of(machine):
    return (
        machine.phase,
        list(machine.queue),
        list(machine.history),
        machine.hearts,
        machine.locked_until,
        machine.lock_kind,
        machine.bump_until,
        machine.wrong_key_until,
    )


def test_join_fills_queue_from_alphabet(rules, rng):
    machine = InputStateMachine(rules, rng)
    assert machine.phase == "no_team"

    machine.join("left")

    assert machine.phase == "idle"
    assert len(machine.queue) == rules.queue_size
    assert set(machine.queue) <= set(rules.alphabet)
    assert machine.hearts == rules.max_hearts


def test_join_rejects_unknown_team(rules, rng):
    machine = InputStateMachine(rules, rng)
    with pytest.raises(ValueError):
        machine.join("middle")


def test_correct_key_advances_queue_by_one(rules, rng):
    machine = joined(rules, rng, team="right", queue="FDKJ")

    result = machine.press("F", now=0.0)

    assert result.correct
    assert result.delta == 1
    assert list(machine.queue)[:3] == ["D", "K", "J"]
    assert len(machine.queue) == 4
    assert machine.queue[-1] in rules.alphabet
    assert list(machine.history) == ["F"]
    assert machine.bump_active(0.05)
    assert not machine.bump_active(0.1)
    assert machine.phase == "idle"


def test_left_team_pulls_negative(rules, rng):
    machine = joined(rules, rng, team="left", queue="DDDD")
    assert machine.press("D", now=0.0).delta == -1


def test_history_is_bounded(rules, rng):
    machine = joined(rules, rng, queue="FDKJ")
    for key in "FDK":
        assert machine.press(key, now=0.0).correct
    assert list(machine.history) == ["D", "K"]


def test_bump_does_not_block_input(rules, rng):
    machine = joined(rules, rng, queue="FFFF")
    assert machine.press("F", now=0.0).correct
    assert machine.press("F", now=0.01).correct


def test_key_normalisation():
    assert normalize_key("f") == "F"
    assert normalize_key("KeyJ") == "J"
    assert normalize_key(" k ") == "K"
    assert normalize_key("Space") == "SPACE"


def test_foreign_keys_ignored_in_every_state(rules, rng):
    # no team
    machine = InputStateMachine(rules, rng)
    before = state_of(machine)
    assert machine.press("X", now=0.0) is None
    assert state_of(machine) == before

    # idle
    machine = joined(rules, rng)
    before = state_of(machine)
    for key in ("X", "Space", "1", ""):
        assert machine.press(key, now=0.0) is None
    assert state_of(machine) == before

    # locked
    machine.press(wrong_key(machine), now=0.0)
    assert machine.phase == "locked"
    before = state_of(machine)
    assert machine.press("Q", now=0.5) is None
    assert state_of(machine) == before


def test_no_team_ignores_alphabet_keys(rules, rng):
    machine = InputStateMachine(rules, rng)
    assert machine.press("F", now=0.0) is None
    assert machine.phase == "no_team"


def test_wrong_key_penalises_and_short_locks(rules, rng):
    machine = joined(rules, rng, team="right", queue="FDKJ")

    result = machine.press("D", now=0.0)

    assert not result.correct
    assert result.expected == "F"
    assert result.delta == -1
    assert machine.hearts == 2
    assert machine.phase == "locked"
    assert machine.lock_kind == "short"
    assert machine.wrong_key_active(0.1)
    # missed prompt is discarded, not retried
    assert list(machine.queue)[:3] == ["D", "K", "J"]
    assert list(machine.history) == []


def test_wrong_key_for_left_team_pulls_right(rules, rng):
    machine = joined(rules, rng, team="left", queue="FDKJ")
    assert machine.press("J", now=0.0).delta == 1


def test_short_lock_expires(rules, rng):
    machine = joined(rules, rng, queue="FDKJ")
    machine.press("K", now=0.0)
    assert machine.next_deadline() == pytest.approx(rules.wrong_key_s)

    assert machine.press(machine.head, now=0.5) is None
    assert machine.next_deadline() == pytest.approx(rules.short_lockout_s)

    assert machine.tick(1.0)
    assert machine.phase == "idle"
    assert machine.hearts == 2
    assert machine.press(machine.head, now=1.0).correct


def test_three_wrong_presses_trigger_long_lockout(rules, rng):
    machine = joined(rules, rng)
    now = 0.0

    for expected_hearts in (2, 1, 0):
        result = machine.press(wrong_key(machine), now=now)
        assert not result.correct
        assert machine.hearts == expected_hearts
        now += rules.short_lockout_s + 0.01

    # the third miss happened at 2.02 and locked until 4.52
    assert machine.lock_kind == "long"
    third_miss_at = 2 * (rules.short_lockout_s + 0.01)

    # every key is a no-op while locked, including the required one
    queue_before = list(machine.queue)
    for offset in (0.1, 1.0, 2.4):
        assert machine.press(machine.head, now=third_miss_at + offset) is None
        assert machine.press(wrong_key(machine), now=third_miss_at + offset) is None
    assert list(machine.queue) == queue_before
    assert machine.hearts == 0

    resumed_at = third_miss_at + rules.long_lockout_s
    result = machine.press(machine.head, now=resumed_at)
    assert result is not None and result.correct
    assert machine.hearts == rules.max_hearts
    assert machine.lock_kind is None


def test_leave_mid_lockout_clears_everything(rules, rng):
    machine = joined(rules, rng)
    machine.press(wrong_key(machine), now=0.0)

    machine.leave()

    assert machine.phase == "no_team"
    assert machine.hearts == rules.max_hearts
    assert machine.next_deadline() is None
    assert list(machine.queue) == []
    assert machine.press("F", now=0.1) is None


def test_queue_length_constant_over_many_presses(rules, rng):
    machine = joined(rules, rng)
    now = 0.0
    for i in range(200):
        key = machine.head if i % 7 else wrong_key(machine)
        machine.press(key, now=now)
        now += 3.0
        assert len(machine.queue) == rules.queue_size
        assert set(machine.queue) <= set(rules.alphabet)
