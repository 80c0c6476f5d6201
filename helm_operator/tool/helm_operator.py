"""Command line tool for running the helm operator."""

import argparse
import asyncio
import logging
import sys
import traceback

from helm_operator.exceptions import HelmOperatorException

from . import get, run

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Operator releasing helm charts declared by HelmRelease resources.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    run.RunAction.register(subparsers)
    get.GetAction.register(subparsers)
    return parser


def main() -> None:
    """helm-operator command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except HelmOperatorException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("helm-operator error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
