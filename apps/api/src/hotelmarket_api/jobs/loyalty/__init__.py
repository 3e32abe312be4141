"""Loyalty maintenance jobs."""
