"""
Telegram Notification Module
Message formatting, quiet-hours policies, the Bot API client and the broadcast dispatcher
"""

from .broadcast import BroadcastDispatcher, BroadcastResult
from .message_formatter import MessageFormatter
from .quiet_hours import QUIET_HOURS_POLICIES, get_quiet_hours_policy, is_quiet_hour
from .telegram_client import LoggingClient, TelegramAPIError, TelegramClient

__all__ = [
    'BroadcastDispatcher',
    'BroadcastResult',
    'MessageFormatter',
    'QUIET_HOURS_POLICIES',
    'get_quiet_hours_policy',
    'is_quiet_hour',
    'LoggingClient',
    'TelegramAPIError',
    'TelegramClient'
]
