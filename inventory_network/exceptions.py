"""Exception hierarchy shared by every service."""


class InventoryNetworkError(Exception):
    """Base class for all inventory network errors."""
    pass


class ValidationError(InventoryNetworkError):
    """Input rejected before any state was changed."""
    pass


class DuplicateCodeError(ValidationError):
    """Warehouse code already registered (case-insensitive)."""
    pass


class DuplicateLocationError(ValidationError):
    """Zone/aisle/shelf/bin slot already exists in the warehouse."""
    pass


class InsufficientInventoryError(ValidationError):
    """Requested quantity exceeds available stock."""
    pass


class NotFoundError(InventoryNetworkError):
    pass


class UnknownWarehouseError(NotFoundError):
    pass


class UnknownLocationError(NotFoundError):
    pass


class TransferNotFoundError(NotFoundError):
    pass


class MissingLocationError(InventoryNetworkError):
    """Order has no customer coordinates but the algorithm needs them."""
    pass


class InvalidTransitionError(InventoryNetworkError):
    """Transfer status change not allowed by the state machine."""
    pass


class ForecastError(InventoryNetworkError):
    pass


class InsufficientDataError(ForecastError):
    pass


class EmptyHistoryError(ForecastError):
    pass


class ConcurrentModificationError(InventoryNetworkError):
    """Stored record version no longer matches the one that was read."""
    pass


class LockTimeoutError(InventoryNetworkError):
    pass
