# This file is part of ec2net. See LICENSE file for license information.
"""Logging setup: everything goes to syslog under the ec2net tag."""
import logging
import logging.handlers
import os

SYSLOG_SOCKET = "/dev/log"
SYSLOG_TAG = "ec2net"
LOG_FORMAT = SYSLOG_TAG + "[%(process)d]: %(levelname)s %(name)s: %(message)s"


def setup_logging(debug: bool = False, address: str = SYSLOG_SOCKET):
    """Route the ec2net logger hierarchy to syslog's user facility.

    Routine detail is logged at DEBUG and only emitted when ``debug`` is
    set. Falls back to stderr when no syslog socket is available.
    """
    root = logging.getLogger(SYSLOG_TAG)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if os.path.exists(address):
        handler = logging.handlers.SysLogHandler(
            address=address,
            facility=logging.handlers.SysLogHandler.LOG_USER,
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    return root
