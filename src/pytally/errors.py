"""Error types reported by the ingestion engine."""


class TallyError(Exception):
    """Base class for every error pytally reports."""


class ProviderError(TallyError):
    """The snapshot provider failed to produce a sample."""


class MalformedSnapshot(TallyError):
    """A snapshot is missing a field or carries a value of the wrong type."""

    def __init__(self, message: str, field: str | None = None, index: int | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.index = index


class InvariantViolation(TallyError):
    """A metric value was out of range and has been clamped to zero."""

    def __init__(self, message: str, field: str, value: object, index: int | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.index = index
