"""
Map orchestrator failure results onto HTTP errors.

The orchestrator never raises for expected problems; routes call raise_for_result
so the failure message becomes the HTTPException detail.
"""

from fastapi import HTTPException, status

from app.services.flow_orchestrator import (
    ERROR_ALREADY_EXISTS,
    ERROR_CLOSED,
    ERROR_INVALID_INPUT,
    ERROR_INVALID_TRANSITION,
    ERROR_MISSING_CONTEXT,
    FlowResult,
)

ERROR_STATUS_CODES = {
    ERROR_MISSING_CONTEXT: status.HTTP_404_NOT_FOUND,
    ERROR_INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ERROR_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ERROR_CLOSED: status.HTTP_409_CONFLICT,
    ERROR_INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def raise_for_result(result: FlowResult) -> FlowResult:
    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES.get(result.error, status.HTTP_400_BAD_REQUEST),
            detail=result.message,
        )
    return result


def not_found(transaction_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Booking context not found for ID: {transaction_id}",
    )
