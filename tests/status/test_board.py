import threading
from datetime import datetime

from hpcpanel.status.board import StatusBoard


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 2, 3, 4, 5)

    def __call__(self):
        return self.now


def test_initial_state_is_idle():
    s = StatusBoard().snapshot()
    assert s.phase == "idle" and s.progress == 0 and not s.is_terminal


def test_lifecycle_to_finished():
    clock = Clock()
    board = StatusBoard(clock=clock)
    board.begin()
    assert board.snapshot().phase == "checking"
    assert board.snapshot().start_time == clock.now

    board.set_phase("hostname", 30, "Hostname setup...")
    board.set_message("still going")
    s = board.snapshot()
    assert (s.phase, s.progress, s.message) == ("hostname", 30, "still going")

    board.finish()
    s = board.snapshot()
    assert s.phase == "finished" and s.progress == 100 and s.end_time == clock.now
    assert s.is_terminal


def test_fail_records_error_and_logs_it():
    board = StatusBoard(clock=Clock())
    board.begin()
    board.fail("Munge setup failed: boom")
    s = board.snapshot()
    assert s.phase == "failed"
    assert s.error_message == "Munge setup failed: boom"
    assert board.logs()[-1] == "[2026-01-02 03:04:05] ERROR: Munge setup failed: boom"


def test_snapshots_are_copies():
    board = StatusBoard()
    snap = board.snapshot()
    snap.phase = "tampered"
    logs = board.logs()
    logs.append("tampered")

    assert board.snapshot().phase == "idle"
    assert board.logs() == []


def test_begin_keeps_log_history():
    board = StatusBoard()
    board.append_log("first run")
    board.begin()
    assert len(board.logs()) == 1


def test_concurrent_appends_are_all_kept():
    board = StatusBoard()

    def writer(i):
        for j in range(200):
            board.append_log(f"{i}-{j}")

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for _ in range(50):
        board.logs()
        board.snapshot()
    for t in threads:
        t.join()

    assert len(board.logs()) == 800
