import pytest

from giving.core.redis import HEARTBEAT_KEY, EMERGENCY_STOP_KEY
from giving.scheduler import settlement_runner

from conftest import FakeGateway


class FakeRedis:
    def __init__(self, values=None, fail=False):
        self.values = dict(values or {})
        self.fail = fail
        self.expiries = {}

    def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.values[key] = value
        self.expiries[key] = ex

    def get(self, key):
        return self.values.get(key)


@pytest.fixture
def wire(monkeypatch, session_factory):
    def _wire(redis):
        monkeypatch.setattr(settlement_runner, "get_sync_redis", lambda: redis)
        monkeypatch.setattr(settlement_runner, "SessionLocal", session_factory)
        return redis
    return _wire


def test_job_writes_heartbeat_and_runs_cycle(wire, create_donation):
    create_donation()
    redis = wire(FakeRedis())
    gateway = FakeGateway()

    result = settlement_runner.settlement_job(gateway)

    assert HEARTBEAT_KEY in redis.values
    assert redis.expiries[HEARTBEAT_KEY] > 0
    assert result.succeeded == 1
    assert len(gateway.calls) == 1


def test_emergency_stop_skips_cycle(wire, create_donation):
    create_donation()
    wire(FakeRedis({EMERGENCY_STOP_KEY: "1"}))
    gateway = FakeGateway()

    assert settlement_runner.settlement_job(gateway) is None
    assert gateway.calls == []


def test_redis_outage_does_not_stop_settlement(wire, create_donation):
    create_donation()
    wire(FakeRedis(fail=True))
    gateway = FakeGateway()

    result = settlement_runner.settlement_job(gateway)

    assert result.succeeded == 1


def test_cycle_errors_are_contained(wire, monkeypatch):
    wire(FakeRedis())

    def broken_cycle(*args, **kwargs):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(settlement_runner.settlement_service, "run_settlement_cycle", broken_cycle)

    assert settlement_runner.settlement_job(FakeGateway()) is None
