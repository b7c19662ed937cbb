# app/core/network.py
"""
Connectivity of the remote profile store.

State machine: unknown -> online <-> offline. Only an active probe (a real write
against Firestore) moves the state; client "online" events are hints that make
the monitor probe sooner. On offline -> online the reconnect hooks run
(credential refresh); the online hooks run after every probe that reaches the
store (pending reconciliation retry, a no-op when nothing is queued).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from apscheduler.schedulers.base import BaseScheduler

Probe = Callable[[], Awaitable[Any]]
Listener = Callable[["NetworkState", "NetworkState"], None]
ReconnectHook = Callable[[], Awaitable[Any]]


class ConnectionStatus(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class NetworkState:
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    checked_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_online(self) -> bool:
        return self.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self.status == ConnectionStatus.OFFLINE

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "last_error": self.last_error,
        }


@dataclass
class NetworkMonitor:
    probe: Probe
    interval_seconds: int = 30
    timeout_seconds: float = 5.0
    JOB_ID = "network-probe"

    _state: NetworkState = field(default_factory=NetworkState, init=False)
    _listeners: List[Listener] = field(default_factory=list, init=False)
    _reconnect_hooks: List[ReconnectHook] = field(default_factory=list, init=False)
    _online_hooks: List[ReconnectHook] = field(default_factory=list, init=False)
    _scheduler: Optional[BaseScheduler] = field(default=None, init=False)
    _hint_task: Optional[asyncio.Task] = field(default=None, init=False)

    @property
    def state(self) -> NetworkState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a (previous, current) listener; returns the unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_reconnect(self, hook: ReconnectHook) -> None:
        self._reconnect_hooks.append(hook)

    def on_online(self, hook: ReconnectHook) -> None:
        self._online_hooks.append(hook)

    async def refresh(self) -> NetworkState:
        """Probe now and publish the resulting state."""
        previous = self._state
        now = datetime.now(timezone.utc)
        try:
            await asyncio.wait_for(self.probe(), timeout=self.timeout_seconds)
            current = NetworkState(ConnectionStatus.ONLINE, now)
        except asyncio.TimeoutError:
            current = NetworkState(ConnectionStatus.OFFLINE, now,
                                   f"probe timed out after {self.timeout_seconds}s")
        except Exception as exc:  # any probe failure means the store is unreachable
            current = NetworkState(ConnectionStatus.OFFLINE, now, str(exc) or type(exc).__name__)

        self._state = current
        if previous.status != current.status:
            logging.info("Profile store connectivity: %s -> %s (%s)",
                         previous.status.value, current.status.value, current.last_error or "ok")
            for listener in list(self._listeners):
                try:
                    listener(previous, current)
                except Exception:
                    logging.exception("Network state listener failed")

        if previous.is_offline and current.is_online:
            await self._run_hooks(self._reconnect_hooks)
        if current.is_online:
            await self._run_hooks(self._online_hooks)
        return current

    async def _run_hooks(self, hooks: List[ReconnectHook]) -> None:
        for hook in list(hooks):
            try:
                await hook()
            except Exception:
                logging.exception("Network hook %s failed", getattr(hook, "__name__", hook))

    def hint(self) -> asyncio.Task:
        """A client reported it is back online: probe soon, do not trust the hint itself."""
        if self._hint_task is None or self._hint_task.done():
            self._hint_task = asyncio.get_running_loop().create_task(self.refresh())
        return self._hint_task

    def start(self, scheduler: BaseScheduler) -> None:
        self._scheduler = scheduler
        scheduler.add_job(
            self.refresh,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            replace_existing=True,
        )
        self.hint()

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.get_job(self.JOB_ID):
            self._scheduler.remove_job(self.JOB_ID)
        self._scheduler = None
        if self._hint_task is not None and not self._hint_task.done():
            self._hint_task.cancel()
        self._hint_task = None
