"""Retry policy and refresh engine."""
