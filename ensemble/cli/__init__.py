"""
CLI Tools for Event and RSVP Administration
"""

from .event_cli import EnsembleCLI, app

__all__ = [
    "EnsembleCLI",
    "app"
]
