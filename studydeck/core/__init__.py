"""
Core modules for studydeck.

This package contains token estimation, quota enforcement, the generation
pipeline, study recording, progress aggregation, billing and export.
"""
