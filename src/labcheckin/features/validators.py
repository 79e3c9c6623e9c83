"""Data entry validator classes."""

import dateutil.parser

from textual import validation


class NotEmpty(validation.Validator):
    def validate(self, value: str) -> validation.ValidationResult:
        if not value or not value.strip():
            return self.failure("Field cannot be empty.")
        return self.success()


class DateValidator(validation.Validator):
    """Validate an optional date entry.

    Blank input is accepted so the field can be left empty.
    """

    def validate(self, value: str) -> validation.ValidationResult:
        """Verify input is blank or a valid date."""
        if not value.strip():
            return self.success()
        try:
            dateutil.parser.parse(value, dayfirst=False).date()
            return self.success()
        except (dateutil.parser.ParserError, OverflowError) as err:
            return self.failure(str(err))


def to_iso_date(value: str) -> str | None:
    """Convert a date typed by the user to YYYY-MM-DD, or None when blank."""
    if not value.strip():
        return None
    return dateutil.parser.parse(value, dayfirst=False).date().isoformat()
