"""
Corridor Engine Errors

Error taxonomy shared by the hospital directory, the mission tracker and the
corridor manager. Every error is recoverable per request; the API layer maps
each class to an HTTP status through ``status_code``.
"""


class CorridorError(Exception):
    """Base class for all corridor engine errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CorridorError, ValueError):
    """Malformed or out-of-range input (negative beds, missing fields, bad coordinates)"""
    status_code = 400


class NotFoundError(CorridorError, LookupError):
    """Unknown accident, hospital or signal id, or a mission with no location yet"""
    status_code = 404


class NotAvailableError(CorridorError):
    """A hospital or mission exists but cannot take the requested action"""
    status_code = 409


class NoHospitalAvailableError(CorridorError):
    """Directory query returned no eligible hospital"""
    status_code = 500
