"""Booking authority clients."""
