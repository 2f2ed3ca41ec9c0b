class VerificationError(Exception):
    pass


class SubmitError(VerificationError):
    """The remote system rejected a job submission. Never retried."""


class PollTransportError(VerificationError):
    """A single poll round trip failed. Counted against the attempt ceiling."""


class InvalidResponseError(PollTransportError):
    """A response body did not match the schema expected from the remote API."""


class NotificationDispatchError(Exception):
    pass


class EventPublishError(Exception):
    pass


class RepositoryError(Exception):
    pass


class QueueTransportError(Exception):
    pass
