"""Test doubles for the registry HTTP API."""
