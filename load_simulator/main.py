from __future__ import annotations

import argparse
import functools
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Callable, TypeVar

from .diagnostics import DIAGNOSTICS_PORT_DEFAULT, start_diagnostics_server
from .pool import CONCURRENT_DEFAULT, PoolConfig, RunnerPool
from .session import SessionParams, connect
from .template import TemplateError, load_template

LOGGER = logging.getLogger("load_simulator")

TEMPLATE_PATH_DEFAULT = "./testdata/configmap-template.yaml"
DURATION_SECONDS_DEFAULT = 10
INTERVAL_MS_DEFAULT = 5

T = TypeVar("T")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate create/update/delete load against a Kubernetes API server")
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file (in-cluster config when unset)")
    parser.add_argument("--context", help="Kubeconfig context to use")
    parser.add_argument("--concurrent", type=int, help="Number of concurrent clients")
    parser.add_argument("--duration", type=float, help="Seconds to run the load for")
    parser.add_argument(
        "--interval",
        type=float,
        help="Milliseconds between each update/create of a client",
    )
    parser.add_argument("--clean", action="store_true", help="Only delete resources left by a previous run")
    parser.add_argument(
        "--update",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Keep patching the resource after creation",
    )
    parser.add_argument("--template", help="Path to the resource template")
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Serve thread dumps on localhost for debugging",
    )
    parser.add_argument(
        "--diagnostics-port",
        type=int,
        default=DIAGNOSTICS_PORT_DEFAULT,
        help="Port of the diagnostics server",
    )
    parser.add_argument("--log-level", help="Logging level")
    parser.add_argument("--log-path", type=str, help="Also write logs to this file")
    args = parser.parse_args(argv)

    if args.concurrent is not None and args.concurrent < 0:
        parser.error("--concurrent must be >= 0")
    if args.duration is not None and args.duration < 0:
        parser.error("--duration must be >= 0")
    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be > 0")
    return args


def _from_env(
    name: str,
    default: T,
    convert: Callable[[str], T],
    valid: Callable[[T], bool] = lambda value: value >= 0,
) -> T:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = convert(raw)
        if not valid(value):
            raise ValueError("out of range")
    except ValueError:
        print(f"invalid {name} value {raw!r}; defaulting to {default}", file=sys.stderr)
        return default
    return value


def setup_logging(level: str, log_path: Path | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="w", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def install_signal_handlers() -> None:
    # SIGTERM ends the run the same way Ctrl-C does.
    signal.signal(signal.SIGINT, signal.default_int_handler)
    signal.signal(signal.SIGTERM, signal.default_int_handler)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    env = os.environ

    kubeconfig = args.kubeconfig or env.get("KUBECONFIG") or None
    context = args.context or env.get("KUBE_CONTEXT") or None
    template_path = args.template or env.get("LOAD_TEMPLATE", TEMPLATE_PATH_DEFAULT)

    concurrent = args.concurrent
    if concurrent is None:
        concurrent = _from_env("LOAD_CONCURRENT", CONCURRENT_DEFAULT, int)

    duration = args.duration
    if duration is None:
        duration = _from_env("LOAD_DURATION_SECONDS", float(DURATION_SECONDS_DEFAULT), float)

    interval_ms = args.interval
    if interval_ms is None:
        interval_ms = _from_env("LOAD_INTERVAL_MS", float(INTERVAL_MS_DEFAULT), float, lambda value: value > 0)

    log_path_value = args.log_path or env.get("LOAD_LOG_PATH")
    setup_logging(
        args.log_level or env.get("LOAD_LOG_LEVEL", "INFO"),
        Path(log_path_value) if log_path_value else None,
    )

    try:
        template = load_template(template_path)
    except TemplateError:
        LOGGER.exception("failed to load template")
        return 1

    if args.diagnostics:
        start_diagnostics_server(port=args.diagnostics_port)

    LOGGER.info(
        "testing for %s seconds with %d concurrent clients (clean=%s, update=%s)",
        duration,
        concurrent,
        args.clean,
        args.update,
    )

    install_signal_handlers()

    pool = RunnerPool(
        PoolConfig(
            concurrency=concurrent,
            duration_s=duration,
            interval_s=interval_ms / 1000.0,
            clean=args.clean,
            update=args.update,
        ),
        template=template,
        connect_fn=functools.partial(connect, SessionParams(kubeconfig=kubeconfig, context=context)),
        logger=LOGGER,
    )
    try:
        pool.run()
    except KeyboardInterrupt:
        print("stopping simulator, waiting for runners to delete their resources", file=sys.stderr)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
