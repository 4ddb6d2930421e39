"""Version information, importable without pulling in heavy dependencies."""

__version__ = "1.0.0"
__version_date__ = "2026-10-18"
