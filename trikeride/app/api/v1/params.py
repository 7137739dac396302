"""
Shared query parameter parsing for booking endpoints.
"""

from typing import List, Optional
from fastapi import HTTPException, status

from trikeride.app.models.booking_enums import BookingStatus


def parse_status_filter(raw: Optional[str]) -> List[BookingStatus]:
    """
    Parse a comma-separated status filter such as ``"accepted,active"``.

    Raises:
        HTTPException 400 on an unknown status
    """
    if not raw:
        return []

    statuses = []
    for value in raw.split(","):
        value = value.strip().lower()
        if not value:
            continue
        try:
            statuses.append(BookingStatus(value))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown booking status: {value}"
            )
    return statuses
