"""cli entrypoint for ideamap."""

import argparse
import logging

from .core.autosave import DEFAULT_AUTOSAVE_DELAY
from .tui.app import run


def main():
    parser = argparse.ArgumentParser(
        description="ideamap - turn a product idea into an editable mind map"
    )
    parser.add_argument(
        "project",
        nargs="?",
        help="id of the project to open (creates a new one if omitted)",
    )
    parser.add_argument(
        "--data-dir",
        "-d",
        help="directory holding project files (default: $IDEAMAP_DATA_DIR or ~/.ideamap)",
    )
    parser.add_argument(
        "--mock",
        "-m",
        action="store_true",
        help="use mock client (no api calls, for testing)",
    )
    parser.add_argument(
        "--autosave-delay",
        type=float,
        default=DEFAULT_AUTOSAVE_DELAY,
        help="seconds of quiet before edits are saved",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="log debug output to ideamap.log",
    )

    args = parser.parse_args()
    if args.verbose:
        # the tui owns the terminal, so log to a file
        logging.basicConfig(
            filename="ideamap.log",
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
    run(
        project_id=args.project,
        data_dir=args.data_dir,
        mock=args.mock,
        autosave_delay=args.autosave_delay,
    )


if __name__ == "__main__":
    main()
