"""Core install lifecycle: resolution, planning, audit, snapshots and commit."""
