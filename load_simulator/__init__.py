"""
Load simulator for the Kubernetes API server.

Spawns a pool of independent runners that each create a resource from a shared
template, keep patching and re-creating it on a fixed interval, and delete it
when the run ends, to exercise admission and API Priority and Fairness under
concurrent clients.
"""

from .main import main

__all__ = ["main"]
