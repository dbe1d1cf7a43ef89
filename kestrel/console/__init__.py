"""Rich, structured console output for kestrel.

Usage:
    from kestrel.console import logger

    logger.info("Opening device...")
    logger.success("Kernel set compiled")
    logger.key_value({"device": "cuda:0", "backend": "triton"})
    logger.metric("tokens/s", 812.4)
"""
from kestrel.console.logger import Logger, get_logger

# Module-level singleton for convenient import
logger = get_logger()

__all__ = ["Logger", "get_logger", "logger"]
