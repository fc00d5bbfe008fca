#!/usr/bin/env python3
"""
Local launcher.

    ./run.py --env development
    ./run.py --env production --no-reload --port 8000
"""
from __future__ import annotations

import argparse
import os

from dotenv import load_dotenv

load_dotenv(override=False)


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the Alianah donations app")
    p.add_argument("--env", default=os.getenv("APP_ENV", "development"),
                   choices=["development", "testing", "production"])
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")))
    p.add_argument("--no-reload", action="store_true", help="disable the reloader")
    return p.parse_args()


def main() -> None:
    args = _parse_args()

    from alianah import create_app

    app = create_app(args.env)
    app.run(
        host=args.host,
        port=args.port,
        debug=bool(app.config.get("DEBUG")),
        use_reloader=not args.no_reload and args.env == "development",
    )


if __name__ == "__main__":
    main()
