from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures raised by the publishing pipeline."""


class AssemblyError(PipelineError):
    """A transcode step failed after its retries were exhausted."""


class EmptyAudioError(PipelineError):
    """The session audio is missing, empty or has no measurable duration."""


class MissingAssetError(PipelineError):
    """A job was submitted for a session lacking required assets."""


class PublisherError(PipelineError):
    """The remote platform rejected a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AlreadyConnectedError(PublisherError):
    """The credential already holds a connection for the requested platform."""


class CapacityError(PipelineError):
    """No credential slot could be handed out."""

    reason = "capacity"


class AllAccountsBusyError(CapacityError):
    """Every slot is held by a recently active channel; retry later."""

    reason = "busy"

    def __init__(self, message: str = "All accounts are busy right now, please try again in a few minutes.") -> None:
        super().__init__(message)


class NoCapacityError(CapacityError):
    """No credential has quota left and nothing can be displaced."""

    reason = "no_capacity"

    def __init__(self, message: str = "No connection capacity is left this month.") -> None:
        super().__init__(message)
