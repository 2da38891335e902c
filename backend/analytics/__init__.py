"""Delivery analytics engine: sprint health, cycle time, bug aging and snapshots."""
