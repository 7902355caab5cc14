"""Virtual Vacation - out-of-office autoresponder for virtual mail domains.

This package decides, per inbound message, whether the recipient (or the
mailbox behind its aliases) is on vacation, makes sure each sender is told
at most once per interval, and sends the reply.
"""

__version__ = "0.1.0"

from virtual_vacation.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
