"""Point-set registration."""

from icp_mapper.registration.gicp import (
    GicpConfig,
    GicpRegistration,
    RegistrationResult,
    estimate_transform,
)

__all__ = ["GicpConfig", "GicpRegistration", "RegistrationResult", "estimate_transform"]
