import asyncio

import pytest

from innovation_agent.services.progress import (
    SCRIPT,
    SCRIPT_DURATION_MS,
    Milestone,
    ProgressBoard,
    Stage,
    StageStatus,
)


def stage(board, stage_id):
    return next(s for s in board["stages"] if s["id"] == stage_id)


async def test_new_board_has_four_waiting_stages():
    progress = ProgressBoard()
    await progress.open("p-1")

    board = await progress.snapshot("p-1")

    assert [s["id"] for s in board["stages"]] == [
        "retrieval", "generation", "evaluation", "synthesis",
    ]
    assert all(s["status"] == "waiting" for s in board["stages"])
    assert not board["finished"]


async def test_milestones_drive_stages_to_completion():
    progress = ProgressBoard()
    await progress.open("p-1")

    for milestone in (
        Milestone.PROBLEM_CREATED,
        Milestone.UPSTREAM_CALLED,
        Milestone.SOLUTIONS_GENERATED,
        Milestone.SOLUTIONS_PERSISTED,
        Milestone.COMPLETED,
    ):
        assert await progress.record("p-1", milestone)

    board = await progress.snapshot("p-1")
    assert board["finished"]
    assert all(s["status"] == "complete" and s["progress"] == 100 for s in board["stages"])
    assert board["milestones"][-1] == "completed"


async def test_failure_finishes_board_with_error():
    progress = ProgressBoard()
    await progress.open("p-1")
    await progress.record("p-1", Milestone.PROBLEM_CREATED)

    await progress.record("p-1", Milestone.FAILED, error="Failed to generate solutions")

    board = await progress.snapshot("p-1")
    assert board["finished"]
    assert board["error"] == "Failed to generate solutions"
    assert stage(board, "synthesis")["status"] == "waiting"
    assert not await progress.record("p-1", Milestone.COMPLETED)


async def test_unknown_board_is_ignored():
    progress = ProgressBoard()

    assert not await progress.record("missing", Milestone.COMPLETED)
    assert await progress.snapshot("missing") is None
    assert not await progress.cancel("missing")


def test_stage_never_moves_backwards():
    s = Stage(id="generation", name="Idea Generation", description="")

    assert s.advance(StageStatus.COMPLETE, 100, ("done",))
    assert not s.advance(StageStatus.ACTIVE, 30, ("again",))
    assert s.status is StageStatus.COMPLETE
    assert s.details == ["done"]


async def test_wait_returns_when_finished():
    progress = ProgressBoard()
    await progress.open("p-1")

    async def finish():
        await asyncio.sleep(0.01)
        await progress.record("p-1", Milestone.COMPLETED)

    finisher = asyncio.create_task(finish())
    board = await progress.wait("p-1", timeout=5)
    await finisher

    assert board["finished"]


async def test_wait_times_out_with_current_snapshot():
    progress = ProgressBoard()
    await progress.open("p-1")
    await progress.record("p-1", Milestone.PROBLEM_CREATED)

    board = await progress.wait("p-1", timeout=0.05)

    assert not board["finished"]
    assert stage(board, "retrieval")["status"] == "complete"


async def test_cancel_releases_waiters_and_stops_updates():
    progress = ProgressBoard()
    await progress.open("p-1")

    waiter = asyncio.create_task(progress.wait("p-1", timeout=5))
    await asyncio.sleep(0)
    assert await progress.cancel("p-1")
    board = await waiter

    assert board["cancelled"]
    assert not await progress.record("p-1", Milestone.PROBLEM_CREATED)


async def test_replay_plays_the_whole_script():
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    progress = ProgressBoard(sleep=record_sleep)
    await progress.open("p-1")

    await progress.start_replay("p-1")

    board = await progress.snapshot("p-1")
    assert board["finished"]
    assert stage(board, "synthesis")["details"] == ["Top 3 solutions identified", "Analysis complete"]
    assert sum(delays) * 1000 == pytest.approx(SCRIPT_DURATION_MS)
    assert len(delays) == sum(1 for step in SCRIPT if step[4])


async def test_cancelled_replay_stops():
    gate = asyncio.Event()

    async def blocking_sleep(_seconds):
        await gate.wait()

    progress = ProgressBoard(sleep=blocking_sleep)
    await progress.open("p-1")
    replay = progress.start_replay("p-1")
    await asyncio.sleep(0)

    await progress.cancel("p-1")
    await asyncio.gather(replay, return_exceptions=True)

    board = await progress.snapshot("p-1")
    assert board["cancelled"]
    assert not board["finished"]
    assert stage(board, "generation")["status"] == "waiting"


async def test_open_evicts_oldest_settled_boards_only():
    progress = ProgressBoard(max_boards=2)
    await progress.open("running")
    await progress.open("done-1")
    await progress.record("done-1", Milestone.COMPLETED)
    await progress.open("done-2")
    await progress.cancel("done-2")

    await progress.open("new")

    assert await progress.snapshot("running") is not None
    assert await progress.snapshot("done-1") is None
    assert await progress.snapshot("done-2") is None
    assert await progress.snapshot("new") is not None
