"""
Bookings Storage Layer
======================

Connectors for the landing zone (raw CSV delivered by the external
ingestion service), the warehouse tables and the quarantine area.

The ingestion service itself is external: it appends raw files to the
landing zone at-least-once. Nothing here transforms data.
"""

__version__ = "1.0.0"
