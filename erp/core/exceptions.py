from fastapi import HTTPException, status

class BaseAppException(HTTPException):
    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

    def __str__(self) -> str:
        return str(self.detail)

class ValidationError(BaseAppException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

class NotFoundError(BaseAppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class InsufficientStockError(ValidationError):
    def __init__(self, detail: str = "Insufficient stock available"):
        super().__init__(detail=detail)

class ConcurrencyConflictError(BaseAppException):
    """Another writer changed the product's stock between read and write"""
    def __init__(self, detail: str = "Concurrent stock update detected"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class StockCountStateError(BaseAppException):
    def __init__(self, detail: str = "Operation not allowed in the current stock count status"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class IncompleteCountError(StockCountStateError):
    def __init__(self, detail: str = "Stock count has uncounted items"):
        super().__init__(detail=detail)

class AlreadyFinalizedError(StockCountStateError):
    def __init__(self, detail: str = "Stock count already completed"):
        super().__init__(detail=detail)
