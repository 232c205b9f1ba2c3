"""
Common package for icp_mapper.

Shared pose type, error kinds and constants used by mapping and registration.

Subpackages:
- transforms/: SE(3) geometry operations
"""
