from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable
from urllib.parse import urlparse

log = logging.getLogger(__name__)

ReachabilityListener = Callable[[bool], None]

DEFAULT_PROBE_INTERVAL_S = 10.0
DEFAULT_PROBE_TIMEOUT_S = 3.0


class ReachabilitySignal:
    """Observable "is the network usable" flag.

    Listeners run synchronously on the event loop and only on transitions.
    """

    def __init__(self, initial: bool = True) -> None:
        self._reachable = bool(initial)
        self._listeners: list[ReachabilityListener] = []

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    def set(self, value: bool) -> bool:
        value = bool(value)
        if value == self._reachable:
            return False
        self._reachable = value
        log.info("Network %s", "reachable" if value else "unreachable")
        for listener in tuple(self._listeners):
            try:
                listener(value)
            except Exception:
                log.exception("Reachability listener failed")
        return True

    def add_listener(self, listener: ReachabilityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove


class ReachabilityProbe:
    """Feeds a :class:`ReachabilitySignal` from periodic TCP connect attempts."""

    def __init__(
        self,
        signal: ReachabilitySignal,
        host: str,
        port: int,
        *,
        interval_s: float = DEFAULT_PROBE_INTERVAL_S,
        timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
    ) -> None:
        self._signal = signal
        self._host = host
        self._port = port
        self._interval_s = interval_s
        self._timeout_s = timeout_s
        self._task: asyncio.Task | None = None

    @classmethod
    def for_url(
        cls,
        signal: ReachabilitySignal,
        url: str,
        *,
        interval_s: float = DEFAULT_PROBE_INTERVAL_S,
        timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
    ) -> ReachabilityProbe:
        parsed = urlparse(url)
        if not parsed.hostname:
            raise ValueError(f"Cannot probe URL without a host: {url!r}")
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return cls(
            signal, parsed.hostname, port, interval_s=interval_s, timeout_s=timeout_s
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._timeout_s,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            log.debug("Reachability probe to %s:%s failed: %r", self._host, self._port, exc)
            reachable = False
        else:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            reachable = True
        self._signal.set(reachable)
        return reachable

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval_s)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
