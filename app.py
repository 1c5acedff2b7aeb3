"""Command-line uploader entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, TextIO

from dotenv import load_dotenv

from uploadman import (
    ReachabilityProbe,
    ReachabilitySignal,
    StaticCredentials,
    UploadManager,
    UploadSettings,
    ZiplineTransferClient,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

log = logging.getLogger(__name__)


def configure_logging(log_file: str | None = None, *, verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    if log_file:
        # keep a copy of the run on disk as well as on the console
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)


@dataclass(slots=True)
class App:
    manager: UploadManager
    transfer: ZiplineTransferClient
    probe: ReachabilityProbe | None = None

    async def close(self) -> None:
        if self.probe is not None:
            self.probe.stop()
        await self.manager.shutdown()
        await self.transfer.close()


def build_app(settings: UploadSettings, *, probe_network: bool = True) -> App:
    """Wire one manager and its collaborators together."""

    transfer = ZiplineTransferClient(
        StaticCredentials.from_settings(settings),
        connect_timeout_s=settings.connect_timeout_s,
        read_timeout_s=settings.read_timeout_s,
    )
    signal = ReachabilitySignal()
    probe = None
    if probe_network and settings.base_url:
        probe = ReachabilityProbe.for_url(
            signal, settings.base_url, interval_s=settings.probe_interval_s
        )
    manager = UploadManager(transfer, reachability=signal, settings=settings)
    return App(manager=manager, transfer=transfer, probe=probe)


async def upload_files(
    manager: UploadManager,
    paths: Sequence[Path],
    *,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """Upload ``paths`` and report each outcome. Returns a process exit code."""

    out = out or sys.stdout
    err = err or sys.stderr
    if not paths:
        return 0
    failures = 0
    with manager.bus.subscribe_completions() as completions:
        waiting = {await manager.enqueue(path) for path in paths}
        async for event in completions:
            if event.task_id not in waiting:
                continue
            waiting.discard(event.task_id)
            if event.success:
                url = event.result.url if event.result else None
                print(f"{event.filename}: {url or 'uploaded'}", file=out)
            else:
                failures += 1
                print(f"{event.filename}: failed ({event.error})", file=err)
            if not waiting:
                break
    return 1 if failures else 0


async def _run(settings: UploadSettings, paths: Sequence[Path], *, probe_network: bool) -> int:
    app = build_app(settings, probe_network=probe_network)
    if app.probe is not None:
        await app.probe.check_once()
        app.probe.start()
    try:
        return await upload_files(app.manager, paths)
    finally:
        await app.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Upload files to a Zipline server.")
    parser.add_argument("files", nargs="+", type=Path, help="Files to upload.")
    parser.add_argument("--concurrency", type=int, help="Uploads to run at once.")
    parser.add_argument("--max-retries", type=int, help="Attempts before giving up.")
    parser.add_argument(
        "--no-probe",
        action="store_true",
        help="Skip the background network reachability probe.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    args = parser.parse_args(argv)

    load_dotenv()
    settings = UploadSettings.from_env()
    if args.concurrency is not None:
        settings.max_concurrent_uploads = max(1, args.concurrency)
    if args.max_retries is not None:
        settings.max_retries = max(1, args.max_retries)
    configure_logging(settings.log_file, verbose=args.verbose)
    if not settings.base_url:
        raise SystemExit("ERROR: ZIPLINE_URL not set")

    log.info("Uploading %d file(s) to %s", len(args.files), settings.base_url)
    return asyncio.run(_run(settings, args.files, probe_network=not args.no_probe))
