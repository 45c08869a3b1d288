"""
Browser control server entry point.
"""
import logging
import sys

from browser_control.core.errors import ConfigError, DuplicateToolError
from browser_control.core.server import MCPToolServer
from browser_control.utils.config_manager import load_config
from browser_control.utils.logging_config import configure_logging


def main():
    """Run the browser control server."""
    try:
        config = load_config()
    except ConfigError as e:
        print(f"Invalid configuration: {e.message}", file=sys.stderr)
        sys.exit(2)

    # Configure logging first
    configure_logging(config)

    try:
        server = MCPToolServer(config)
    except DuplicateToolError as e:
        logging.getLogger(__name__).error(f"Failed to load tools: {e.message}")
        sys.exit(2)
    server.run()


if __name__ == "__main__":
    main()
