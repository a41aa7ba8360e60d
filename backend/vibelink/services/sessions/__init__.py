"""Session domain services: round sequencing, lifecycle, activity, leaderboards, matches.

This package owns every write to session-scoped tables. HTTP routes and
socket handlers import from here so both surfaces share one write path per
entity, keeping transport concerns separated from game mechanics.
"""
