"""
Logging setup.

Every module logs through a named logger under the "openvpn_mng" namespace
(e.g. "openvpn_mng.auth", "openvpn_mng.audit"). This module configures the
root handler once at startup; calling it again is harmless because
logging.basicConfig is a no-op when handlers already exist.

Passwords and raw tokens are never passed to a logger anywhere in the code base.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with the project-wide format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )