from .initial_selection import InitialSelector
from .live_failover import LiveFailover

__all__ = ["InitialSelector", "LiveFailover"]
