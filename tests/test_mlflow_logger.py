from types import SimpleNamespace

import pytest

from innovation_agent.services import mlflow_logger
from innovation_agent.services.mlflow_logger import MLFlowLogger


class FakeMlflow:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append(name)
            if name == self.fail_on:
                raise RuntimeError(f"{name} failed")
            if name == "start_run":
                return SimpleNamespace(info=SimpleNamespace(run_id="run-1"))
            return None
        return record


@pytest.fixture
def fake_mlflow(monkeypatch):
    def install(fail_on=None):
        fake = FakeMlflow(fail_on)
        monkeypatch.setattr(mlflow_logger, "mlflow", fake)
        return fake
    return install


def outcome():
    return {
        "success": True,
        "source": "fallback",
        "solutions": [
            {"feasibility_score": 80, "sustainability_score": 90, "innovation_score": 70},
            {"feasibility_score": 60, "sustainability_score": 70, "innovation_score": 90},
        ],
    }


def test_disabled_without_tracking_uri(fake_mlflow):
    fake = fake_mlflow()
    tracker = MLFlowLogger()

    tracker.log_submission("p-1", outcome())

    assert not tracker.enabled
    assert fake.calls == []


def test_submission_is_logged_in_one_run(fake_mlflow):
    fake = fake_mlflow()
    tracker = MLFlowLogger(tracking_uri="http://127.0.0.1:5001")

    tracker.log_submission("p-1", outcome())

    assert tracker.enabled
    assert fake.calls[:3] == ["set_tracking_uri", "set_experiment", "start_run"]
    assert fake.calls.count("log_metric") == 4
    assert fake.calls[-1] == "end_run"


def test_tracking_failures_are_swallowed(fake_mlflow):
    fake = fake_mlflow(fail_on="log_dict")
    tracker = MLFlowLogger(tracking_uri="http://127.0.0.1:5001")

    tracker.log_generation({"prompt": "p"}, "response")

    assert fake.calls[-1] == "end_run"


async def test_async_logging_runs_off_the_event_loop(fake_mlflow, monkeypatch):
    fake = fake_mlflow()
    tracker = MLFlowLogger(tracking_uri="http://127.0.0.1:5001")
    offloaded = []

    async def to_thread(func, *args):
        offloaded.append(func.__name__)
        return func(*args)

    monkeypatch.setattr(mlflow_logger.asyncio, "to_thread", to_thread)

    await tracker.alog_submission("p-1", outcome())
    await tracker.alog_generation({"prompt": "p"}, "response")

    assert offloaded == ["log_submission", "log_generation"]
    assert fake.calls.count("start_run") == 2


async def test_async_logging_is_skipped_when_disabled(fake_mlflow, monkeypatch):
    fake = fake_mlflow()
    tracker = MLFlowLogger()

    async def to_thread(func, *args):
        raise AssertionError("tracking is off")

    monkeypatch.setattr(mlflow_logger.asyncio, "to_thread", to_thread)

    await tracker.alog_submission("p-1", outcome())

    assert fake.calls == []
