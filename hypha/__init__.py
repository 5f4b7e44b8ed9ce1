"""Energy-aware gossip mesh, task bidding and evaluation metrics for peer-to-peer nodes."""

__version__ = "0.1.0"