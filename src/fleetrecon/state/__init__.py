"""State layer.

The single source of truth for how document extractions are stored,
ranked and merged into a deterministic per-vehicle field state.
"""
