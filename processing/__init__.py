"""
Processing Module
=================

Data processing pipelines for the bookings analytics platform.

Layers:
- staging: Landing text rows to typed, validated rows (stg_bookings)
- curated: Analytics-ready, business rules applied (dim_bookings)
"""
