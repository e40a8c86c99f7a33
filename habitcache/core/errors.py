from __future__ import annotations


class HabitCacheError(Exception):
    """Base class for every failure raised by habitcache."""


class InvalidTimestamp(HabitCacheError, ValueError):
    pass


class UnknownTimezone(HabitCacheError, ValueError):
    pass


class InvalidRecurrenceRule(HabitCacheError, ValueError):
    pass


class StorageFailure(HabitCacheError, RuntimeError):
    """A database write failed; the surrounding transaction was rolled back."""
