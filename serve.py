#!/usr/bin/env python3
"""
LoadScout server launcher.

Starts the API with uvicorn from the backend directory so the `api` and
`scrapers` packages resolve without installation.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

BACKEND_DIR = Path(__file__).parent / 'backend'
sys.path.insert(0, str(BACKEND_DIR))

from api.config import settings  # noqa: E402


def parse_args():
    parser = argparse.ArgumentParser(description="Run the LoadScout API")
    parser.add_argument('--host', default=settings.api_host)
    parser.add_argument('--port', type=int, default=settings.api_port)
    parser.add_argument('--reload', action='store_true', default=settings.api_debug,
                        help="Restart on code changes")
    return parser.parse_args()


def main():
    args = parse_args()

    print("=" * 60)
    print("🚚 LoadScout")
    print("=" * 60)
    print(f"   API:  http://{args.host}:{args.port}")
    print(f"   Docs: http://{args.host}:{args.port}/docs")
    if not settings.encryption_key:
        print("   ⚠️  ENCRYPTION_KEY is not set: connecting credentials will fail")
    print()

    uvicorn.run(
        'api.main:app',
        host=args.host,
        port=args.port,
        reload=args.reload,
        app_dir=str(BACKEND_DIR),
        log_level=settings.log_level.lower(),
    )


if __name__ == '__main__':
    main()
