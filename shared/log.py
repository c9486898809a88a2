"""
Component logging factory.

Every module logs through a "ServiceSync.<component>" stdlib logger. This
module provides a factory returning the five level functions so modules
don't repeat the logger lookup and level plumbing.

Usage:
    from shared.log import create_logger
    log_trace, log_debug, log_info, log_warn, log_error = create_logger("Engine")
    log_info("Processing service 14852976")  # -> logger "ServiceSync.Engine"
"""

import logging

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def create_logger(component: str = ""):
    """Create log functions for a component.

    Args:
        component: Component name suffix. If provided, the logger name becomes
                   "ServiceSync.{component}", otherwise "ServiceSync".

    Returns:
        Tuple of (log_trace, log_debug, log_info, log_warn, log_error) functions.
    """
    name = f"ServiceSync.{component}" if component else "ServiceSync"
    logger = logging.getLogger(name)

    def log_trace(msg): logger.log(TRACE, msg)
    def log_debug(msg): logger.debug(msg)
    def log_info(msg): logger.info(msg)
    def log_warn(msg): logger.warning(msg)
    def log_error(msg): logger.error(msg)

    return log_trace, log_debug, log_info, log_warn, log_error
