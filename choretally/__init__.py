"""choretally: recurrence and completion tracking for household tasks."""

__version__ = "0.1.0"
