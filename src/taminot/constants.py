"""Enumerations shared across Taminot modules.

Centralises domain constants so that the data access layer (DAL), the ledger
and workflow logic, and the CLI rely on a single source of truth for roles,
statuses, movement types, and sheet names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Organization id that owns the central warehouse ledger.
ADMIN_ORG_ID = "admin"

# Ledger key used for products tracked without variants.
DEFAULT_VARIANT = "default"

BLOOD_GROUPS: tuple[str, ...] = (
    "O(I) Rh+",
    "O(I) Rh-",
    "A(II) Rh+",
    "A(II) Rh-",
    "B(III) Rh+",
    "B(III) Rh-",
    "AB(IV) Rh+",
    "AB(IV) Rh-",
)


class UserRole(str, Enum):
    """Enumerate the roles a user account can hold."""

    ADMIN = "ADMIN"
    ORG = "ORG"


class RequestStatus(str, Enum):
    """Enumerate the lifecycle states of a requisition."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MovementType(str, Enum):
    """Enumerate the direction of a stock transaction."""

    IN = "IN"
    OUT = "OUT"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    USERS = "Users"
    PRODUCTS = "Products"
    REQUISITIONS = "Requisitions"
    STOCK_LOG = "StockLog"
    SETTINGS = "Settings"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ADMIN_ORG_ID",
    "DEFAULT_VARIANT",
    "BLOOD_GROUPS",
    "UserRole",
    "RequestStatus",
    "MovementType",
    "SheetName",
]
