"""Who and where the service is running, stamped on every log row."""

import getpass
import logging
import os
import platform
import socket

from report_compiler.core.config import get_settings

logger = logging.getLogger(__name__)


def current_username() -> str:
    try:
        return os.environ.get("USER") or os.environ.get("USERNAME") or getpass.getuser() or "unknown_user"
    except (KeyError, OSError):
        return "unknown_user"


def current_hostname() -> str:
    try:
        return socket.gethostname() or platform.node() or "unknown_host"
    except OSError:
        return "unknown_host"


USERNAME = current_username()
HOSTNAME = current_hostname()
APPLICATION_ID = get_settings().application_id
