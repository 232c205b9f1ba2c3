"""
Recoverable error kinds for the mapping loop.

None of these is fatal: each is carried inside a result object
(TransformResult, RegistrationResult, GrowthResult) and the orchestrator
skips the current scan.
"""

from __future__ import annotations

from enum import Enum


class MapperError(str, Enum):
    """Why a transform, registration or growth cycle did not succeed."""

    # Registration attempted before the map had any points (bootstrap case).
    EMPTY_MAP = "empty_map"
    # Iteration budget exhausted before the update fell below epsilon.
    DID_NOT_CONVERGE = "did_not_converge"
    # Too few source/target pairs within the correspondence distance.
    NO_CORRESPONDENCES = "no_correspondences"
    # Non-finite or non-rigid pose, or a cloud that is not (N, 3).
    MALFORMED_TRANSFORM = "malformed_transform"
