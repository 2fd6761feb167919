"""Logging utilities for the email RPC layer.

Handlers, levels and formats are configured once by the process entry point
through ``logging.basicConfig()``; modules only ask for named loggers.

Example:
    Typical usage in a module::

        from mail_rpc.logger import get_logger

        logger = get_logger("EmailController")
        logger.debug("request registered")
"""

import logging


def get_logger(name: str = "MailRpc") -> logging.Logger:
    """Return the named logger used by the RPC layer.

    Args:
        name: The logger name. Defaults to "MailRpc".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)
