"""Shared library for the inoffice presence service."""
