"""
Core Package

This package contains the scoring and aggregation logic for crowd-energy.

Structure:
- intake.py - Sample validation and batch signals
- scoring.py - Decayed per-participant score accumulator
- buckets.py - Fixed-width energy buckets over an event window
- peaks.py - Non-overlapping peak window selection
- leaderboard.py - Ranking and top-N snapshots
- engine.py - Facade exposing the public operations

Usage:
Core modules are imported by the API layer. Do not import route modules from core.
"""
