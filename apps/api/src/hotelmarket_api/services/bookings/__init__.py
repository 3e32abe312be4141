"""Booking lifecycle, quoting and settlement."""
