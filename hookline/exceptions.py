"""Exceptions raised by Hookline.

Delivery failures are never raised: they are recorded on the delivery
record. Only failing to record the intent to deliver reaches the caller.
"""


class HooklineError(Exception):
    """Base exception for Hookline errors."""


class DeliveryRecordError(HooklineError):
    """The delivery record for an event could not be persisted.

    Raised by the dispatcher when the destination lookup or the insert of
    the delivery record fails. The event has not been queued and will not
    be delivered unless the caller retries.

    Attributes:
        subject_id: Subject the event was about.
        event_type: Event that could not be recorded.
    """

    def __init__(self, subject_id: str, event_type: str, reason: str) -> None:
        self.subject_id = subject_id
        self.event_type = event_type
        self.reason = reason
        super().__init__(
            f"Failed to record {event_type} webhook for {subject_id}: {reason}"
        )
