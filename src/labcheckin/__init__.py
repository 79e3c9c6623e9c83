"""Lab check-in kiosk with an offline cache for the central database."""

__version__ = "1.0.0"
