"""Kiosk queue: numbered tickets routed through service windows."""
