"""Bundled data files for reap."""
