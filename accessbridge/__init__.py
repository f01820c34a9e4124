"""Resident registry sync with the access-control platform."""
