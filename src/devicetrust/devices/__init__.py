"""Device subsystem — primary/secondary role coordination."""

from devicetrust.devices.coordinator import (
    CoordinatorOutcome,
    DeviceRoleCoordinator,
    NoEligibleSecondary,
)

__all__ = [
    "CoordinatorOutcome",
    "DeviceRoleCoordinator",
    "NoEligibleSecondary",
]
