"""Developer task runner for the ad marketplace (install, serve, test, seed)."""

from __future__ import annotations

import argparse
import asyncio
import os
import shutil
import subprocess
from pathlib import Path

ROOT = Path(__file__).parent
CACHE_PATTERNS = ["**/__pycache__", ".pytest_cache", ".ruff_cache", ".mypy_cache"]


def poetry(*args: str, env: dict[str, str] | None = None) -> None:
    """Run ``poetry <args>``, exiting with poetry's status on failure."""

    command = ["poetry", *args]
    print("$", " ".join(command))
    try:
        completed = subprocess.run(command, check=False, env=env)
    except FileNotFoundError as exc:  # pragma: no cover - depends on local env
        raise SystemExit("poetry is not installed or not on PATH") from exc
    if completed.returncode:
        raise SystemExit(completed.returncode)


def serve(args: argparse.Namespace) -> None:
    overrides = {"APP_HOST": args.host, "APP_PORT": str(args.port) if args.port else None}
    env = {**os.environ, **{name: value for name, value in overrides.items() if value}}
    poetry("run", "admarket", env=env)


def lint(_args: argparse.Namespace) -> None:
    poetry("run", "ruff", "check")
    poetry("run", "mypy", "admarket", "tests")


async def prepare_database(with_demo_data: bool) -> None:
    from admarket.main import init_models

    await init_models()
    if with_demo_data:
        from admarket.seed import seed_demo_data

        await seed_demo_data()


def migrate(_args: argparse.Namespace) -> None:
    asyncio.run(prepare_database(with_demo_data=False))
    print("Database schema is ready.")


def seed(_args: argparse.Namespace) -> None:
    asyncio.run(prepare_database(with_demo_data=True))
    print("Demo advertiser and sample ads are in place.")


def clean(_args: argparse.Namespace) -> None:
    stale = [p for pattern in CACHE_PATTERNS for p in ROOT.glob(pattern) if p.is_dir()]
    for path in stale:
        shutil.rmtree(path, ignore_errors=True)
    print(f"Removed {len(stale)} cache directories.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("install", help="Install the app and test extras via Poetry.").set_defaults(
        func=lambda _args: poetry("install", "--extras", "test")
    )

    run_parser = sub.add_parser("run", help="Start the API server.")
    run_parser.add_argument("--host", help="Bind address.")
    run_parser.add_argument("--port", type=int, help="Bind port.")
    run_parser.set_defaults(func=serve)

    test_parser = sub.add_parser("test", help="Run the pytest suite.")
    test_parser.add_argument("pytest_args", nargs=argparse.REMAINDER, help="Extra arguments passed to pytest.")
    test_parser.set_defaults(func=lambda args: poetry("run", "pytest", *args.pytest_args))

    sub.add_parser("format", help="Format code with Ruff.").set_defaults(func=lambda _args: poetry("run", "ruff", "format"))
    sub.add_parser("lint", help="Run Ruff and mypy.").set_defaults(func=lint)
    sub.add_parser("db", help="Create or upgrade the database schema.").set_defaults(func=migrate)
    sub.add_parser("seed", help="Create the schema and insert a demo advertiser with sample ads.").set_defaults(func=seed)
    sub.add_parser("clean", help="Remove Python and tooling caches.").set_defaults(func=clean)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
