"""
Logging configuration for the browser control server.
"""
import logging

from browser_control.core.config import EffectiveConfig


def configure_logging(config: EffectiveConfig):
    """Configure logging based on server settings.

    Logs go to stderr; stdout is reserved for the stdio transport.
    """
    # Set up root logger
    root_logger = logging.getLogger()

    # Create console handler
    console_handler = logging.StreamHandler()

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    # Debug mode overrides the configured level
    if config.features.enable_debug_mode:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, config.logging.level.upper())
    root_logger.setLevel(log_level)
    console_handler.setLevel(log_level)

    # Remove any existing handlers to avoid duplicate logs
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Outbound HTTP client chatter stays at WARNING unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    logging.info(f"Logging configured with level: {logging.getLevelName(log_level)}")
    if config.features.enable_debug_mode:
        logging.debug("Debug logging enabled")
