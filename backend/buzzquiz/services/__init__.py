"""Session domain services: matchmaking, rounds, judging and timers.

This package contains the game logic imported by HTTP routes and socket
handlers, keeping transport concerns separated from the session state
machine.
"""
