"""Data models for transport tracking."""

from .transport import (
    ALL_MATERIALS,
    MASTER_LISTS,
    AppUser,
    DataSnapshot,
    FactoryBalance,
    MasterData,
    Material,
    OperationStatus,
    Release,
    TransportRecord,
    UserRole,
)

__all__ = [
    "ALL_MATERIALS",
    "MASTER_LISTS",
    "AppUser",
    "DataSnapshot",
    "FactoryBalance",
    "MasterData",
    "Material",
    "OperationStatus",
    "Release",
    "TransportRecord",
    "UserRole",
]
