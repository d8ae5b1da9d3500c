"""
Person sighting grouping from structured photo descriptions.
"""

__version__ = "0.1.0"
