"""Thin wrappers around common command line tools."""
