"""pocketcal - personal calendar recurrence engine.

The package keeps imports light: the engine modules live in
``pocketcal.calendar`` (expansion, grouping) and ``pocketcal.domain``
(store collaborator, edit resolution, reminders) and are imported on demand.
"""

__version__ = "0.1.0"

import logging
import sys

from colorlog import ColoredFormatter

_LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"


def _init_logging(level_name: str) -> None:
    """Attach a colorized stderr handler to the root logger and set its level."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(ColoredFormatter(_LOG_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(handler)

    level = logging.getLevelName(level_name.upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)
