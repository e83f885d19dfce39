from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace

from preview_proxy.cache_store import CacheStore
from preview_proxy.config import PreviewSettings, load_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="preview-proxy", description="Document preview proxy")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP preview server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    prune = subparsers.add_parser("prune", help="Evict the oldest cache entries")
    prune.add_argument("--max-entries", type=int, default=None)
    prune.add_argument("--max-bytes", type=int, default=None)
    return parser


def configure_logging(settings: PreviewSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_prune(settings: PreviewSettings, *, max_entries: int | None, max_bytes: int | None) -> dict:
    entries = max_entries if max_entries is not None else settings.cache_max_entries
    limit_bytes = max_bytes if max_bytes is not None else settings.cache_max_bytes
    if entries is None and limit_bytes is None:
        raise SystemExit("prune needs --max-entries or --max-bytes (or PREVIEW_CACHE_MAX_* settings)")
    cache = CacheStore(settings.cache_dir, settings.cache_seconds)
    return cache.prune(max_entries=entries, max_bytes=limit_bytes).to_dict()


def run_server(settings: PreviewSettings) -> None:
    import uvicorn

    from preview_proxy.app import create_app

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings)

    if args.command == "prune":
        payload = run_prune(settings, max_entries=args.max_entries, max_bytes=args.max_bytes)
        print(json.dumps(payload, indent=2))
        return 0

    overrides = {}
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    run_server(replace(settings, **overrides))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
