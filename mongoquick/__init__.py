"""Encrypted MongoDB connection profiles with pooled, health-checked connections."""

from __future__ import annotations

from .config import ManagerSettings, Settings, load_settings
from .connections import CircuitOpenError, ConnectionFailedError, ConnectionManager, ConnectionManagerError
from .models import ConnectionHealth, ConnectionOptions, ConnectionProfile, ProfileMetadata, Topology
from .store import (
    DuplicateProfileError,
    InvalidProfileName,
    InvalidProfileUri,
    ProfileImportError,
    ProfileStore,
    ProfileStoreError,
    ProfileValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "CircuitOpenError",
    "ConnectionFailedError",
    "ConnectionHealth",
    "ConnectionManager",
    "ConnectionManagerError",
    "ConnectionOptions",
    "ConnectionProfile",
    "DuplicateProfileError",
    "InvalidProfileName",
    "InvalidProfileUri",
    "ManagerSettings",
    "ProfileImportError",
    "ProfileMetadata",
    "ProfileStore",
    "ProfileStoreError",
    "ProfileValidationError",
    "Settings",
    "Topology",
    "__version__",
    "load_settings",
]
