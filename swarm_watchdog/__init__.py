"""Process supervisor for a swarm worker node.

Keeps one worker alive in a detached terminal session, restarts it when it
dies or hangs, re-enters it with betting enabled when a new game round starts,
and stays out of the way after an operator stops it by hand.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
