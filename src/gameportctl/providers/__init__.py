"""Provider interfaces for gameportctl."""
from __future__ import annotations

from .application import ApplicationDeployer, ApplicationDeployError
from .database import DatabaseError, DatabaseProvisioner
from .systemd import ServiceUnitDescriptor, SystemdError, SystemdProvider

__all__ = [
    "ApplicationDeployError",
    "ApplicationDeployer",
    "DatabaseError",
    "DatabaseProvisioner",
    "ServiceUnitDescriptor",
    "SystemdError",
    "SystemdProvider",
]
