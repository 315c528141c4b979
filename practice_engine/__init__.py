"""
Practice Session Engine.

Runs timed practice sessions over a curriculum tree: non-repeating question
selection per sub-topic, answer evaluation, daily session limits by
subscription tier, and server-computed rewards.
"""

__version__ = "0.1.0"
