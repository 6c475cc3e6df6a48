"""
Product Service error taxonomy.

HTTP-path errors are mapped to status codes by the error handler middleware.
Event-path errors are logged and swallowed by the inbound dispatcher.
Infrastructure errors raised during startup abort the process.
"""

from typing import Any, Dict, List, Optional


class ProductServiceError(Exception):
    """Base class for all product service errors."""

    status_code = 500
    message = "Erreur serveur"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.message
        super().__init__(self.detail)

    def to_response(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.detail}


class NotFoundError(ProductServiceError):
    status_code = 404
    message = "Produit non trouvé"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"No product with id '{product_id}'")

    def to_response(self) -> Dict[str, Any]:
        return {"message": self.message}


class InvalidQuantityError(ProductServiceError):
    status_code = 400
    message = "Quantité invalide"


class InsufficientStockError(ProductServiceError):
    status_code = 400
    message = "Stock insuffisant"

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Product '{product_id}' has {available} in stock, {requested} requested"
        )

    def to_response(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "error": self.detail,
            "available": self.available,
            "requested": self.requested,
        }


class ProductValidationError(ProductServiceError):
    status_code = 400
    message = "Données invalides"

    def __init__(self, fields: Dict[str, str]):
        self.fields = fields
        super().__init__(
            "; ".join(f"{field}: {reason}" for field, reason in fields.items())
        )

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)


class StockConflictError(ProductServiceError):
    """Optimistic write lost the race too many times."""

    status_code = 409
    message = "Conflit de mise à jour"


class UnauthorizedError(ProductServiceError):
    status_code = 401
    message = "Accès refusé"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        if message:
            self.message = message
        super().__init__(detail)

    def to_response(self) -> Dict[str, Any]:
        return {"message": self.message}


class MalformedMessageError(ProductServiceError):
    """Inbound bus message could not be decoded into a usable payload."""


class BusUnavailableError(ProductServiceError):
    """Event bus could not be reached."""

    status_code = 503


class StoreUnavailableError(ProductServiceError):
    """Inventory store could not be reached."""

    status_code = 503
