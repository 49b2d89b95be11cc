"""Reminder policy built from settings.

All semantic validation of the abandonment configuration happens here so
that a bad deployment fails before any scheduler starts.
"""

from dataclasses import dataclass
from datetime import timedelta

from cart_recovery.config import Settings
from cart_recovery.domain.cart import ReminderTier
from cart_recovery.domain.lifecycle import LifecycleThresholds
from cart_recovery.exceptions import ConfigurationError


@dataclass(frozen=True)
class ReminderPolicy:
    thresholds: LifecycleThresholds
    tiers: tuple[ReminderTier, ...]
    max_reminders: int
    max_cart_age: timedelta | None = None
    final_discount_code: str | None = None

    @classmethod
    def build(
        cls,
        stale_minutes: int,
        abandoned_minutes: int,
        schedule_minutes: list[int],
        max_reminders: int,
        max_cart_age_minutes: int = 0,
        final_discount_code: str | None = None,
    ) -> "ReminderPolicy":
        thresholds = LifecycleThresholds(
            stale=timedelta(minutes=stale_minutes),
            abandoned=timedelta(minutes=abandoned_minutes),
        )

        if max_reminders < 0:
            raise ConfigurationError("max_reminders must not be negative")
        if max_reminders > 0 and not schedule_minutes:
            raise ConfigurationError(
                "Reminder schedule is empty but max_reminders is non-zero"
            )
        if any(minutes <= 0 for minutes in schedule_minutes):
            raise ConfigurationError("Reminder schedule entries must be positive")
        if len(set(schedule_minutes)) != len(schedule_minutes):
            raise ConfigurationError("Reminder schedule entries must be unique")
        if max_cart_age_minutes < 0:
            raise ConfigurationError("max_cart_age_minutes must not be negative")

        ordered = sorted(schedule_minutes)[:max_reminders]
        if max_cart_age_minutes and ordered and max_cart_age_minutes <= ordered[-1]:
            raise ConfigurationError(
                "max_cart_age_minutes must exceed the last reminder threshold"
            )

        tiers = tuple(
            ReminderTier(
                threshold=timedelta(minutes=minutes),
                position=index + 1,
                is_final=index == len(ordered) - 1,
            )
            for index, minutes in enumerate(ordered)
        )

        return cls(
            thresholds=thresholds,
            tiers=tiers,
            max_reminders=max_reminders,
            max_cart_age=timedelta(minutes=max_cart_age_minutes) if max_cart_age_minutes else None,
            final_discount_code=final_discount_code or None,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReminderPolicy":
        if settings.reminder_interval_seconds <= 0:
            raise ConfigurationError("reminder_interval_seconds must be positive")
        if settings.reminder_initial_delay_seconds is not None and settings.reminder_initial_delay_seconds < 0:
            raise ConfigurationError("reminder_initial_delay_seconds must not be negative")
        if settings.reminder_dispatch_timeout_seconds <= 0:
            raise ConfigurationError("reminder_dispatch_timeout_seconds must be positive")
        if settings.reminder_dispatch_concurrency <= 0:
            raise ConfigurationError("reminder_dispatch_concurrency must be positive")

        return cls.build(
            stale_minutes=settings.abandoned_stale_minutes,
            abandoned_minutes=settings.abandoned_mark_minutes,
            schedule_minutes=list(settings.abandoned_reminder_schedule),
            max_reminders=settings.abandoned_max_reminders,
            max_cart_age_minutes=settings.abandoned_max_cart_age_minutes,
            final_discount_code=settings.abandoned_final_discount_code,
        )
