import argparse
import json
import os
import sys

ROOT = os.path.dirname(os.path.abspath(__file__))
BACKEND_DIR = os.path.join(ROOT, "backend")


def serve(args) -> int:
    import uvicorn

    print(f"\nBackend: http://{args.host}:{args.port}/docs\n")
    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        app_dir=BACKEND_DIR,
    )
    return 0


def replay(args) -> int:
    if BACKEND_DIR not in sys.path:
        sys.path.insert(0, BACKEND_DIR)

    from core.config import EngineConfig
    from core.engine import AnalysisEngine
    from db import InMemoryStore, SQLiteStorage
    from logging_config import setup_logging
    from services.replay import replay_file

    setup_logging(level=args.log_level)

    config = EngineConfig.from_env()
    store = SQLiteStorage(config.db_path) if args.persist and config.db_path else InMemoryStore()
    engine = AnalysisEngine(config=config, store=store)

    try:
        report = replay_file(args.file, engine, timeframe=args.timeframe, symbol=args.symbol)
    except FileNotFoundError:
        print(f"File not found: {args.file}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    for message in report.messages:
        print(message)

    summary = report.to_dict()
    summary.pop("messages")
    latest = engine.latest()
    summary["latest"] = latest.to_dict() if latest and args.verbose else None
    print(json.dumps(summary, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Order book signal service")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=serve)

    p_replay = sub.add_parser("replay", help="Replay an NDJSON snapshot file")
    p_replay.add_argument("file")
    p_replay.add_argument("--timeframe", default=None)
    p_replay.add_argument("--symbol", default=None)
    p_replay.add_argument("--persist", action="store_true",
                          help="Use the SQLite store (alerts, settings) instead of memory")
    p_replay.add_argument("--log-level", default="WARNING")
    p_replay.add_argument("--verbose", action="store_true", help="Print the latest analysis")
    p_replay.set_defaults(func=replay)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
