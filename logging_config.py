"""Configures logging for the cargo desk.

One call at start-up (from the dashboard or a script) gives every engine
module the same format and level.
"""

import logging
import sys


def setup_logging(level='INFO'):
    """Sets up the root logger to write to standard output.

    ``level`` may be a level name ('DEBUG', 'INFO', ...) or a logging
    constant. Unknown names fall back to INFO.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )
    # Streamlit's file watcher is chatty at INFO.
    logging.getLogger('watchdog').setLevel(logging.WARNING)
