"""
Voxel map, correspondence builder, refined path and the growth orchestrator.

Import from the submodules, e.g. ``icp_mapper.mapping.mapper``.
"""
