"""Exception types shared across the ingestion pipeline."""


class ChainPulseError(Exception):
    """Base class for all service errors."""


class TransientNetworkError(ChainPulseError):
    """A call to the chain provider or the signature directory failed."""


class RetryExhausted(ChainPulseError):
    """An operation failed on every allowed attempt.
    
    Attributes:
        attempts: Number of attempts that were made
        cause: The exception raised by the last attempt
    """
    
    def __init__(self, description: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"{description} failed after {attempts} attempts: {cause}")
        self.description = description
        self.attempts = attempts
        self.cause = cause


class OperationCancelled(ChainPulseError):
    """A retry backoff wait was interrupted by shutdown."""


class SubscriptionFailure(ChainPulseError):
    """The block notification stream itself failed."""


class MalformedData(ChainPulseError):
    """A block or transaction is missing fields that cannot be defaulted."""
