"""ctxtracker entry point."""

import logging
import sys

from dotenv import find_dotenv, load_dotenv

from .cli import run_cli

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    argv = sys.argv[1:]
    verbose = "-v" in argv or "--verbose" in argv
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    # watchdog is chatty at debug level
    logging.getLogger("watchdog").setLevel(logging.INFO)

    sys.exit(run_cli(argv))


if __name__ == "__main__":
    main()
