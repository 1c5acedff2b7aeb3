from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path


def _run_bootstrap() -> None:
    subprocess.run(
        [sys.executable, "-m", "pip", "install", "-e", str(Path(__file__).parent)],
        check=True,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the uploader.", add_help=False)
    parser.add_argument(
        "--bootstrap",
        action="store_true",
        help="Install/update the project and its dependencies before starting.",
    )
    args, rest = parser.parse_known_args()

    if args.bootstrap:
        _run_bootstrap()
    from app import main as app_main

    raise SystemExit(app_main(rest))


if __name__ == "__main__":
    main()
