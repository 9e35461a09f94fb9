"""
Tests for the iteration governor and its state machine.
"""

import asyncio

import pytest

from agent.governor import GovernorState, IterationGovernor, TaskState


def test_turns_within_cap_run_without_confirmation():
    async def _confirm(message):
        raise AssertionError("confirm should not be called")

    async def _run():
        task = TaskState(iteration_cap=3)
        governor = IterationGovernor(task, _confirm, increment=2)
        results = [await governor.begin_turn() for _ in range(3)]
        return task, results

    task, results = asyncio.run(_run())
    assert results == [True, True, True]
    assert task.iteration_count == 3
    assert task.state == GovernorState.RUNNING


def test_turn_past_cap_asks_and_extends():
    asked = []

    async def _confirm(message):
        asked.append(message)
        return True

    async def _run():
        task = TaskState(iteration_cap=2)
        governor = IterationGovernor(task, _confirm, increment=5)
        for _ in range(3):
            assert await governor.begin_turn()
        return task

    task = asyncio.run(_run())
    assert asked == ["I've completed 2 operations (limit 2). Continue for up to 5 more?"]
    assert task.iteration_cap == 7
    assert task.state == GovernorState.RUNNING


def test_declining_stops_the_task():
    async def _confirm(message):
        return False

    async def _run():
        task = TaskState(iteration_cap=1)
        governor = IterationGovernor(task, _confirm, increment=5)
        first = await governor.begin_turn()
        second = await governor.begin_turn()
        third = await governor.begin_turn()
        return task, (first, second, third)

    task, results = asyncio.run(_run())
    assert results == (True, False, False)
    assert task.state == GovernorState.STOPPED
    assert task.iteration_cap == 1


def test_no_operator_stops_at_cap():
    async def _run():
        task = TaskState(iteration_cap=1)
        governor = IterationGovernor(task, None)
        return task, [await governor.begin_turn(), await governor.begin_turn()]

    task, results = asyncio.run(_run())
    assert results == [True, False]
    assert task.state == GovernorState.STOPPED


def test_cancelled_confirmation_stops_and_propagates():
    async def _confirm(message):
        await asyncio.sleep(3600)
        return True

    async def _run():
        task = TaskState(iteration_cap=0)
        governor = IterationGovernor(task, _confirm)
        turn = asyncio.ensure_future(governor.begin_turn())
        await asyncio.sleep(0)
        assert task.state == GovernorState.AWAITING_CONFIRMATION
        turn.cancel()
        with pytest.raises(asyncio.CancelledError):
            await turn
        return task

    task = asyncio.run(_run())
    assert task.state == GovernorState.STOPPED


def test_terminal_states_are_final():
    task = TaskState()
    governor = IterationGovernor(task)
    governor.complete()
    assert task.state == GovernorState.COMPLETED
    assert task.state.is_terminal
    governor.abort()
    governor.stop()
    assert task.state == GovernorState.COMPLETED
    with pytest.raises(ValueError):
        governor.complete()


def test_each_task_gets_its_own_state():
    a = TaskState()
    b = TaskState()
    assert a.task_id != b.task_id
    a.paused = True
    assert not b.paused
