from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidAmountError(ServiceError):
    """Amount is not positive, has sub-paisa precision, or exceeds what may be requested."""

    def __init__(self, message: str = "Payment amount must be greater than 0") -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ForbiddenError(ServiceError):
    def __init__(self, message: str = "Access denied for this student") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class AlreadyProcessedError(ServiceError):
    """A decision was attempted on a payment request that is no longer pending."""

    def __init__(self, message: str = "This request has already been processed") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class ConflictError(ServiceError):
    """Concurrent modification still detected after the bounded retries ran out."""

    def __init__(self, message: str = "Ledger was modified concurrently, please retry") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class PersistenceError(ServiceError):
    def __init__(self, message: str = "Could not save changes; nothing was applied") -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ReceiptSequenceError(ServiceError):
    """No receipt number could be allocated. The payment is recorded without one."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)
