"""
User roles enumeration.

Roles are issued by the external identity provider and carried in the JWT.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operator with system-level access
        PASSENGER: Posts booking requests
        DRIVER: Claims and completes bookings
    """
    ADMIN = "ADMIN"
    PASSENGER = "PASSENGER"
    DRIVER = "DRIVER"
