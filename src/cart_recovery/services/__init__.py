"""Business logic services."""

from cart_recovery.services.analytics import AbandonmentAnalytics
from cart_recovery.services.cart_service import CartService
from cart_recovery.services.dispatcher import NotificationDispatcher
from cart_recovery.services.recovery_token import RecoveryService, RecoveryTokenService
from cart_recovery.services.reminder_scheduler import ReminderScheduler, TickReport

__all__ = [
    "AbandonmentAnalytics",
    "CartService",
    "NotificationDispatcher",
    "RecoveryService",
    "RecoveryTokenService",
    "ReminderScheduler",
    "TickReport",
]
