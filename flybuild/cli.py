from __future__ import annotations

import argparse
import os
import sys

from .client import FlyClient
from .config import DEFAULT_CONFIG_PATH
from .errors import FlyError
from .models import EXIT_CLIENT_ERROR, BuildRequest


def _resolve_arguments(arguments: list[str]) -> list[str]:
    arguments = list(arguments)
    if arguments and arguments[0] == "--":
        arguments = arguments[1:]
    return arguments


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fly",
        description="Run a build on the orchestrator and stream its output.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable verbose request and event tracing",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to client config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--atc-url",
        default=None,
        help="Orchestrator URL override (default: $ATC_URL or config)",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=None,
        help="Connection timeout in seconds",
    )
    parser.add_argument(
        "-i",
        "--input",
        default=None,
        help="Directory to upload as the build input (default: current directory)",
    )
    parser.add_argument(
        "-c",
        "--build-config",
        default=None,
        help="Build configuration file (default: build.yml in the input directory)",
    )
    parser.add_argument(
        "--unprivileged",
        action="store_true",
        help="Run the build without elevated privileges",
    )
    parser.add_argument(
        "arguments",
        nargs=argparse.REMAINDER,
        help="Extra arguments appended to run.args: -- [args...]",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)

    client = FlyClient(
        config_path=ns.config,
        atc_url=ns.atc_url,
        connect_timeout=ns.connect_timeout,
        verbose=bool(ns.verbose),
    )

    try:
        request = BuildRequest(
            input_dir=ns.input or os.getcwd(),
            config_path=ns.build_config,
            arguments=_resolve_arguments(ns.arguments),
            privileged=not ns.unprivileged,
        )
        result = client.execute(request)
    except (ValueError, FlyError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return EXIT_CLIENT_ERROR

    return result.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
