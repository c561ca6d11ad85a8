"""Utility helpers for reap."""
