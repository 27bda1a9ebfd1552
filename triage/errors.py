"""Error taxonomy for the triage engine."""


class TriageError(Exception):
    """Base class for triage engine errors."""


class ValidationError(TriageError):
    """Missing or malformed input (e.g. an empty utterance)."""


class InvalidTransition(ValidationError):
    """A ticket status change that the lifecycle does not allow."""


class NotFoundError(TriageError):
    """Unknown call, ticket, technician or property id."""


class NoTechnicianAvailable(TriageError):
    """No technician could be reserved. Surfaced as a failed DispatchResult, not raised to callers."""


class NotificationDeliveryFailure(TriageError):
    """A notification could not be delivered. Logged and recorded, never fatal."""


class ClassificationUnavailable(TriageError):
    """Transient failure from a classification backend."""


class CallEnded(TriageError):
    """The call was terminated (hangup, dispatch or handoff) and takes no more turns."""
