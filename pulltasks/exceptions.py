class PermanentTaskError(Exception):
    """Raised by a handler when retrying the task can never succeed."""


class TaskPayloadError(PermanentTaskError): pass


class UnknownTaskError(PermanentTaskError): pass
