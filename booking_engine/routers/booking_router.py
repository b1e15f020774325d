from fastapi import APIRouter, Depends, HTTPException, status, Request
from typing import List, Annotated
from jose import jwt, JWTError
from fastapi.security import APIKeyHeader

from .. import schemas
from ..config import settings
from ..engine import BookingEngine
from ..record_builder import BOOKER_ALIASES
from ..service import get_booking_engine

from fastapi_limiter.depends import RateLimiter


router = APIRouter(prefix="/bookings", tags=["Bookings"])

api_key_header = APIKeyHeader(name="Authorization")

ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "network": status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        token = request.headers.get("Authorization")
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            return request.client.host  # Fallback to IP

        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")

        if user_id:
            return str(user_id)
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        pass
    return request.client.host


write_limiter = RateLimiter(times=30, minutes=1, identifier=get_key_by_user_id_or_ip)
read_limiter = RateLimiter(times=120, minutes=1, identifier=get_key_by_user_id_or_ip)


async def get_current_user_id_from_token(
        token: Annotated[str, Depends(api_key_header)]
) -> str:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header to get the user ID.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            raise credentials_exception
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        if not user_id:
            raise credentials_exception
        return str(user_id)
    except (JWTError, ValueError, AttributeError):
        raise credentials_exception


def raise_for_error(result: schemas.OperationResult):
    """Turns the engine's (data, error) pair into an HTTP error."""
    if result.error is None:
        return
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=result.error,
    )


def _payload_for(booking: schemas.BookingPayload, user_id: str) -> dict:
    payload = booking.model_dump(exclude_unset=True)
    # Bookings without an explicit booker belong to the caller
    if not any(payload.get(alias) for alias in BOOKER_ALIASES):
        payload["booker_id"] = user_id
    return payload


@router.post("/", response_model=schemas.OperationResult, status_code=status.HTTP_201_CREATED)
async def create_booking(
        booking: schemas.BookingPayload,
        user_id: Annotated[str, Depends(get_current_user_id_from_token)],
        engine: BookingEngine = Depends(get_booking_engine),
        limit: None = Depends(write_limiter)
):
    """
    Create a booking. Assignment, ledger and stats failures come back as
    warnings; the booking itself is saved regardless.
    """
    result = await engine.create(_payload_for(booking, user_id))
    raise_for_error(result)
    return result


@router.put("/{booking_id}", response_model=schemas.OperationResult)
async def update_booking(
        booking_id: str,
        booking: schemas.BookingPayload,
        user_id: Annotated[str, Depends(get_current_user_id_from_token)],
        engine: BookingEngine = Depends(get_booking_engine),
        limit: None = Depends(write_limiter)
):
    """
    Replace a booking. The performer set is replaced as a whole.
    """
    result = await engine.update(booking_id, _payload_for(booking, user_id))
    raise_for_error(result)
    return result


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
        booking_id: str,
        user_id: Annotated[str, Depends(get_current_user_id_from_token)],
        engine: BookingEngine = Depends(get_booking_engine),
        limit: None = Depends(write_limiter)
):
    result = await engine.delete(booking_id)
    raise_for_error(result)


@router.get("/", response_model=List[dict])
async def read_bookings(
        user_id: Annotated[str, Depends(get_current_user_id_from_token)],
        engine: BookingEngine = Depends(get_booking_engine),
        limit: None = Depends(read_limiter)
):
    """
    Get all bookings, most recent first, with their performers.
    """
    result = await engine.get_all()
    raise_for_error(result)
    return result.data


@router.get("/performer/{performer_id}", response_model=List[dict])
async def read_performer_bookings(
        performer_id: str,
        user_id: Annotated[str, Depends(get_current_user_id_from_token)],
        engine: BookingEngine = Depends(get_booking_engine),
        limit: None = Depends(read_limiter)
):
    result = await engine.get_by_performer(performer_id)
    raise_for_error(result)
    return result.data


@router.get("/{booking_id}", response_model=dict)
async def read_booking(
        booking_id: str,
        user_id: Annotated[str, Depends(get_current_user_id_from_token)],
        engine: BookingEngine = Depends(get_booking_engine),
        limit: None = Depends(read_limiter)
):
    result = await engine.get_by_id(booking_id)
    raise_for_error(result)
    return result.data
