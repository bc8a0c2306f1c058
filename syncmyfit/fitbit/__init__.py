"""Fitbit OAuth session, authenticated requests, and health data sync."""
