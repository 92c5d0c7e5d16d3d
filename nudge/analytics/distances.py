"""Standard target distances (meters) for personal records, in display order."""

from __future__ import annotations

MILE = 1609.34

# Activities within this fraction of a target count as an exact match
EXACT_MATCH_TOLERANCE = 0.05

RUNNING_DISTANCES: dict[str, float] = {
    "400m": 400.0,
    "1km": 1000.0,
    "1 mile": MILE,
    "5k": 5000.0,
    "10k": 10000.0,
    "15k": 15000.0,
    "Half Marathon": 21097.5,
    "Marathon": 42195.0,
}

CYCLING_DISTANCES: dict[str, float] = {
    "5 mile": 5 * MILE,
    "10K": 10000.0,
    "10 mile": 10 * MILE,
    "20K": 20000.0,
    "30K": 30000.0,
    "40K": 40000.0,
    "50K": 50000.0,
    "80K": 80000.0,
    "50 mile": 50 * MILE,
    "90K": 90000.0,
    "100K": 100000.0,
    "100 mile": 100 * MILE,
    "180K": 180000.0,
}

LONGEST_RUN = "Longest"
LONGEST_RIDE = "Longest Ride"
BIGGEST_CLIMB = "Biggest Climb"
ELEVATION_GAIN = "Elevation Gain"
