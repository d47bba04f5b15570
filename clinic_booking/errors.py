"""Error taxonomy shared by the booking engine and its adapters."""


class ClinicBookingError(Exception):
    """Base class for all engine errors."""


class ValidationError(ClinicBookingError):
    """Malformed user or tool input (unparseable date, short name, bad phone, missing slot)."""


class NoAvailabilityError(ClinicBookingError):
    """A valid range produced no bookable slots."""


class UpstreamError(ClinicBookingError):
    """A calendar, LLM, or delivery collaborator failed."""


class AppointmentNotFoundError(UpstreamError):
    """The calendar has no event for the requested appointment id."""


class ConfigurationError(ClinicBookingError, ValueError):
    """A required external credential or setting is missing. Fatal at startup."""
