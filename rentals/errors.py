"""Domain errors raised by the booking engine and catalog services.

Each error carries the HTTP status it is rendered with; the app factory turns
them into ``{"message": ...}`` responses.
"""


class RentalError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(RentalError):
    """Missing or malformed fields, bad date ordering, past start date."""
    status_code = 400


class NotFound(RentalError):
    status_code = 404


class Conflict(RentalError):
    """Requested range overlaps an existing reservation."""
    status_code = 409


class Forbidden(RentalError):
    status_code = 403


class InvalidState(RentalError):
    """Operation not allowed for the record's current status."""
    status_code = 400
