"""
Ensemble Hub - performance ensemble membership and event backend

- Event normalization and live event feeds
- RSVP synchronization across mirrored collections
- Rosters, availability and participation reports
- Role claims and HTTP proxy functions
"""

__version__ = "0.1.0"
