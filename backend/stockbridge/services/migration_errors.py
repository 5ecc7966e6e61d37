"""
Exceptions raised by the cutover/migration engine.

Validation-style failures subclass ValueError so the API layer can keep
mapping ValueError to 400 the way the other routers do.
"""
from typing import Any, Dict, List, Optional


class MigrationErrorType:
    UNMAPPED_PRODUCT = "UNMAPPED_PRODUCT"
    MISSING_COST = "MISSING_COST"
    DATABASE_ERROR = "DATABASE_ERROR"
    SQUARE_API_ERROR = "SQUARE_API_ERROR"


class MigrationError(Exception):
    """Base error for a single migration step"""

    def __init__(
        self,
        error_type: str,
        message: str,
        can_proceed: bool = False,
        product_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.can_proceed = can_proceed
        self.product_id = product_id
        self.location_id = location_id


class UnmappedProductError(MigrationError):
    def __init__(self, square_variation_id: str, location_id: Optional[str] = None):
        super().__init__(
            MigrationErrorType.UNMAPPED_PRODUCT,
            f"Square variation {square_variation_id} is not mapped to a product",
            can_proceed=False,
            location_id=location_id,
        )
        self.square_variation_id = square_variation_id


class SquareApiError(MigrationError):
    def __init__(self, message: str, endpoint: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(MigrationErrorType.SQUARE_API_ERROR, f"Square API error: {message}")
        self.endpoint = endpoint
        self.status_code = status_code


class CutoverValidationError(ValueError):
    """Cutover input rejected; errors holds every violation found"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def __str__(self):
        if not self.errors:
            return self.message
        return f"{self.message}: {'; '.join(self.errors)}"


class InvalidCostError(ValueError):
    def __init__(self, cost: Any):
        super().__init__(f"Invalid cost {cost}: approved cost must be greater than zero")
        self.cost = cost


class MissingSupplierError(ValueError):
    def __init__(self, product_id: Any):
        super().__init__(f"Product {product_id}: a supplier is required when no cost entries were extracted")
        self.product_id = product_id


class ExtractionError(Exception):
    """
    Extraction-phase failure with guidance for the review UI.

    Use the factory classmethods; to_dict() is the API error payload.
    """

    def __init__(
        self,
        code: str,
        message: str,
        user_message: str,
        recovery_action: str,
        can_retry: bool = True,
        can_resume: bool = False,
        location_id: Optional[str] = None,
        batch_number: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message
        self.recovery_action = recovery_action
        self.can_retry = can_retry
        self.can_resume = can_resume
        self.location_id = location_id
        self.batch_number = batch_number
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recovery_action": self.recovery_action,
            "can_retry": self.can_retry,
            "can_resume": self.can_resume,
            "location_id": self.location_id,
            "batch_number": self.batch_number,
            "details": self.details,
        }

    @classmethod
    def session_not_found(cls, session_id: str) -> "ExtractionError":
        return cls(
            "SESSION_NOT_FOUND",
            f"Extraction session {session_id} not found",
            "The extraction session could not be found. It may have been deleted.",
            "Start a new extraction session.",
            can_retry=False,
        )

    @classmethod
    def location_not_found(cls, location_id: str) -> "ExtractionError":
        return cls(
            "LOCATION_NOT_FOUND",
            f"Location {location_id} not found",
            "The selected location could not be found.",
            "Refresh the location list and select again.",
            can_retry=False,
            location_id=location_id,
        )

    @classmethod
    def square_inventory_fetch_failed(cls, location_id: str, error: Exception) -> "ExtractionError":
        return cls(
            "SQUARE_INVENTORY_FETCH_FAILED",
            f"Square inventory fetch failed for {location_id}: {error}",
            "Unable to fetch inventory from Square. This may be a temporary issue.",
            "Wait a moment and retry; progress already saved is kept.",
            can_retry=True,
            can_resume=True,
            location_id=location_id,
        )

    @classmethod
    def validation_error(cls, field: str, value: Any, constraint: str) -> "ExtractionError":
        return cls(
            "VALIDATION_ERROR",
            f"Invalid {field}={value!r}: {constraint}",
            f"Invalid input: {constraint}",
            "Correct the input and try again.",
            can_retry=False,
            details={"field": field},
        )
