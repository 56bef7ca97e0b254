#!/usr/bin/env python3
"""Script to process one GitHub webhook payload (e.g. from a GitHub Actions run)."""

import json
import logging
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from templatebot.application.event_handler import EventHandler
from templatebot.config import ConfigError, Settings

logger = logging.getLogger(__name__)


def main(argv=None):
    """Handle the event named by GITHUB_EVENT_NAME with the payload at GITHUB_EVENT_PATH.

    Both can be overridden positionally: handle_event.py <event-name> <payload.json>
    """
    argv = sys.argv[1:] if argv is None else argv
    event_name = argv[0] if len(argv) > 0 else os.getenv("GITHUB_EVENT_NAME")
    payload_path = argv[1] if len(argv) > 1 else os.getenv("GITHUB_EVENT_PATH")

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        return 2

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not event_name or not payload_path:
        logger.error("Usage: handle_event.py <event-name> <payload.json> (or set GITHUB_EVENT_NAME/GITHUB_EVENT_PATH)")
        return 2

    try:
        with open(payload_path, encoding='utf-8') as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read event payload {payload_path}: {e}")
        return 1

    handler = EventHandler.from_settings(settings)
    result = handler.handle(event_name, payload)
    logger.info(f"Handled {event_name} event: {result!r}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
