from __future__ import annotations

import asyncio

import pytest

from uploadman.reachability import ReachabilityProbe, ReachabilitySignal


def test_listeners_fire_only_on_transitions() -> None:
    signal = ReachabilitySignal(initial=True)
    seen: list[bool] = []
    remove = signal.add_listener(seen.append)

    assert signal.set(True) is False
    assert signal.set(False) is True
    assert signal.set(False) is False
    assert signal.set(True) is True
    remove()
    signal.set(False)

    assert seen == [False, True]
    assert signal.is_reachable is False


def test_failing_listener_does_not_block_others() -> None:
    signal = ReachabilitySignal()
    seen: list[bool] = []

    def _broken(_: bool) -> None:
        raise RuntimeError("listener broke")

    signal.add_listener(_broken)
    signal.add_listener(seen.append)
    signal.set(False)

    assert seen == [False]


def test_probe_for_url_defaults_ports() -> None:
    signal = ReachabilitySignal()

    https_probe = ReachabilityProbe.for_url(signal, "https://z.example")
    http_probe = ReachabilityProbe.for_url(signal, "http://z.example:8080/base")

    assert (https_probe._host, https_probe._port) == ("z.example", 443)
    assert (http_probe._host, http_probe._port) == ("z.example", 8080)
    with pytest.raises(ValueError):
        ReachabilityProbe.for_url(signal, "not a url")


def test_probe_tracks_listening_server() -> None:
    async def scenario():
        signal = ReachabilitySignal(initial=False)

        async def _accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            writer.close()

        server = await asyncio.start_server(_accept, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        probe = ReachabilityProbe(signal, "127.0.0.1", port, timeout_s=1.0)
        up = await probe.check_once()
        server.close()
        await server.wait_closed()
        down = await probe.check_once()
        return up, down, signal.is_reachable

    up, down, reachable = asyncio.run(scenario())

    assert up is True
    assert down is False
    assert reachable is False


def test_probe_start_and_stop() -> None:
    async def scenario():
        signal = ReachabilitySignal(initial=True)
        probe = ReachabilityProbe(signal, "127.0.0.1", 9, interval_s=0.01, timeout_s=0.5)
        probe.start()
        running = probe.running
        for _ in range(100):
            if not signal.is_reachable:
                break
            await asyncio.sleep(0.01)
        probe.stop()
        return running, probe.running, signal.is_reachable

    running, still_running, reachable = asyncio.run(scenario())

    assert running is True
    assert still_running is False
    assert reachable is False
