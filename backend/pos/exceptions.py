"""Errors raised by the point-of-sale services"""


class ServiceError(Exception):
    """An external collaborator (order store, inventory, customers) failed"""


class CatalogLoadError(ServiceError):
    pass


class OrderCreationError(ServiceError):
    pass


class StockDecrementError(ServiceError):
    def __init__(self, message, failed_items=None):
        super().__init__(message)
        self.failed_items = list(failed_items or [])


class CheckoutInProgress(Exception):
    """A checkout is already being submitted for this terminal"""
