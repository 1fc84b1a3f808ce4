#!/usr/bin/env python3
"""
Launch the ranking API under uvicorn.

The predictor is built in-process at startup by a factory function:

    python -m serving.run_server --predictor-factory myproject.engine:build_predictor
"""

import argparse
import os

import uvicorn

from serving.api import PREDICTOR_FACTORY_ENV


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve rec_engine rankings over HTTP")
    parser.add_argument(
        "--predictor-factory",
        default=os.environ.get(PREDICTOR_FACTORY_ENV),
        help=f"'module:function' returning a trained Predictor (env: {PREDICTOR_FACTORY_ENV})",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--workers", type=int, default=1,
                        help="Each worker trains its own predictor at startup")
    parser.add_argument("--log-level", default="info",
                        choices=["debug", "info", "warning", "error"])
    parser.add_argument("--reload", action="store_true", help="Development only")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    if not args.predictor_factory:
        raise SystemExit(
            f"No predictor factory: pass --predictor-factory or set {PREDICTOR_FACTORY_ENV}"
        )
    # Reloader and worker processes re-import the app and read the factory from the env.
    os.environ[PREDICTOR_FACTORY_ENV] = args.predictor_factory

    uvicorn.run(
        "serving.api:app",
        host=args.host,
        port=args.port,
        workers=None if args.reload else args.workers,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
