"""Nudge: Strava activity mirror and personal-record engine."""
