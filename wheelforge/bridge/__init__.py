"""Bridges to external cryptographic backends."""
