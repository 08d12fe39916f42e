from __future__ import annotations

import threading

import allure

from jobline.orchestrator.registry import RunningJobRegistry

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Cancellation"),
]


def test_register_abort_removes_entry_and_sets_handle() -> None:
    registry = RunningJobRegistry()
    handle = registry.register("job-1")

    assert "job-1" in registry
    assert len(registry) == 1
    assert not handle.is_cancelled

    assert registry.abort("job-1") is True
    assert handle.is_cancelled
    assert "job-1" not in registry
    assert len(registry) == 0


def test_abort_for_job_not_running_here_is_noop() -> None:
    registry = RunningJobRegistry()
    handle = registry.register("job-1")

    assert registry.abort("job-2") is False
    assert not handle.is_cancelled


def test_discard_drops_entry_without_aborting() -> None:
    registry = RunningJobRegistry()
    handle = registry.register("job-1")

    registry.discard("job-1")
    registry.discard("job-1")

    assert "job-1" not in registry
    assert registry.abort("job-1") is False
    assert not handle.is_cancelled


def test_handle_wait_wakes_on_abort_from_another_thread() -> None:
    registry = RunningJobRegistry()
    handle = registry.register("job-1")
    timer = threading.Timer(0.05, registry.abort, args=("job-1",))
    timer.start()
    try:
        assert handle.wait(5) is True
    finally:
        timer.cancel()


def test_handle_wait_times_out_when_not_aborted() -> None:
    handle = RunningJobRegistry().register("job-1")

    assert handle.wait(0.01) is False
