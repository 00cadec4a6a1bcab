"""Game domain services: scoring, the round ledger and the match controller.

This package contains pure(ish) domain logic that should be imported by
HTTP routes and socket handlers, keeping transport concerns separated
from core game mechanics.
"""
