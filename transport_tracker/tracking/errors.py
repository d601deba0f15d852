"""Errors raised by forms and store operations."""


class TrackerError(Exception):
    """Base class; the message is meant for the end user."""


class FormValidationError(TrackerError):
    pass


class PermissionDeniedError(TrackerError):
    pass


class NotFoundError(TrackerError):
    pass
