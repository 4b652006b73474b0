"""Message schema layer for remote scene updates."""

from .arrays import *  # noqa: F401,F403
from .envelopes import *  # noqa: F401,F403
from .errors import *  # noqa: F401,F403
from .messages import *  # noqa: F401,F403
from .parser import MESSAGE_TYPES, MessageParser, unpack_object
from .validation import *  # noqa: F401,F403

__all__ = [name for name in globals().keys() if not name.startswith("_")]
