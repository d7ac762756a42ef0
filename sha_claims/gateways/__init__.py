"""Gateways to external systems."""
