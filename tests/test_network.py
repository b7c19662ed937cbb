from __future__ import annotations

import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fakes import StubBackend
from neurohub.app.core.errors import StoreUnavailable
from neurohub.app.core.network import ConnectionStatus, NetworkMonitor
from neurohub.app.schemas.profile import Identity


class SwitchableProbe:
    def __init__(self):
        self.online = False
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if not self.online:
            raise ConnectionError("unreachable")


def test_initial_state_is_unknown():
    monitor = NetworkMonitor(probe=SwitchableProbe())
    assert monitor.state.status == ConnectionStatus.UNKNOWN
    assert monitor.state.to_dict()["checked_at"] is None


def test_transitions_notify_listeners_once_per_change():
    probe = SwitchableProbe()
    monitor = NetworkMonitor(probe=probe)
    seen = []
    unsubscribe = monitor.subscribe(lambda prev, cur: seen.append((prev.status.value, cur.status.value)))

    async def scenario():
        await monitor.refresh()
        await monitor.refresh()
        probe.online = True
        await monitor.refresh()

    asyncio.run(scenario())
    assert seen == [("unknown", "offline"), ("offline", "online")]
    assert monitor.state.last_error is None

    unsubscribe()
    probe.online = False
    asyncio.run(monitor.refresh())
    assert len(seen) == 2


def test_slow_probe_counts_as_offline():
    async def slow():
        await asyncio.sleep(1)

    monitor = NetworkMonitor(probe=slow, timeout_seconds=0.01)
    state = asyncio.run(monitor.refresh())
    assert state.is_offline
    assert "timed out" in state.last_error


def test_reconnect_hooks_run_only_after_offline():
    probe = SwitchableProbe()
    probe.online = True
    monitor = NetworkMonitor(probe=probe)
    ran = []

    async def broken_hook():
        raise RuntimeError("refresh failed")

    async def hook():
        ran.append(monitor.state.status)

    monitor.on_reconnect(broken_hook)
    monitor.on_reconnect(hook)

    asyncio.run(monitor.refresh())
    assert ran == []

    probe.online = False
    asyncio.run(monitor.refresh())
    probe.online = True
    asyncio.run(monitor.refresh())
    assert ran == [ConnectionStatus.ONLINE]


def test_reconnect_retries_pending_reconciliation(make_orchestrator):
    probe = SwitchableProbe()
    monitor = NetworkMonitor(probe=probe)
    tier = StubBackend("t1", StoreUnavailable("down"))
    orchestrator = make_orchestrator([tier], monitor=monitor, retry_attempts=0)
    monitor.on_reconnect(orchestrator.retry_pending)

    asyncio.run(monitor.refresh())
    result = asyncio.run(orchestrator.reconcile(Identity(uid="u1", email="pat@example.com")))
    assert result.status == "pending"
    assert tier.calls == 0

    tier.error = None
    probe.online = True
    asyncio.run(monitor.refresh())

    assert orchestrator.pending_uids() == []
    assert "u1" in tier.records


def test_start_registers_interval_job_and_stop_removes_it():
    probe = SwitchableProbe()
    probe.online = True
    monitor = NetworkMonitor(probe=probe, interval_seconds=60)

    async def scenario():
        scheduler = AsyncIOScheduler()
        scheduler.start()
        monitor.start(scheduler)
        job = scheduler.get_job(NetworkMonitor.JOB_ID)
        await monitor.hint()
        monitor.stop()
        remaining = scheduler.get_job(NetworkMonitor.JOB_ID)
        scheduler.shutdown(wait=False)
        return job, remaining

    job, remaining = asyncio.run(scenario())
    assert job is not None
    assert remaining is None
    assert probe.calls == 1
    assert monitor.state.is_online


def test_online_probe_retries_pending_without_a_transition(make_orchestrator):
    probe = SwitchableProbe()
    probe.online = True
    monitor = NetworkMonitor(probe=probe)
    tier = StubBackend("t1", StoreUnavailable("down"))
    orchestrator = make_orchestrator([tier], monitor=monitor, retry_attempts=0)
    monitor.on_online(orchestrator.retry_pending)

    asyncio.run(monitor.refresh())
    assert asyncio.run(orchestrator.reconcile(Identity(uid="u1", email="pat@example.com"))).status == "pending"

    tier.error = None
    asyncio.run(monitor.refresh())

    assert monitor.state.is_online
    assert orchestrator.pending_uids() == []
    assert "u1" in tier.records
