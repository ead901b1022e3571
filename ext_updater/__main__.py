"""
Console entry point: runs the Typer app and turns the errors that escape it
into a short message with hints and an exit status.
"""

import logging
import sys

from rich.console import Console

from ext_updater.cli.app import app
from ext_updater.cli.formatters import format_error_with_suggestions
from ext_updater.exceptions import ExtUpdaterError

log = logging.getLogger("ext_updater")


def main() -> None:
    # Typer exits on its own for success, usage errors and Ctrl-C
    try:
        app()
    except ExtUpdaterError as e:
        Console(stderr=True).print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(1)
    except Exception as e:
        log.debug("Unhandled error", exc_info=True)
        Console(stderr=True).print(
            f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}"
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
