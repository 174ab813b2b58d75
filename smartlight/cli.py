"""Run the SmartLight hub.

Usage:
    smartlight                          # settings from env / .env
    smartlight --port 8080 --reload
"""

from __future__ import annotations

import argparse

import uvicorn

from .core.config import settings


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="SmartLight device hub")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--reload", action="store_true", help="auto-reload on code changes")
    args = parser.parse_args(argv)

    uvicorn.run("smartlight.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
