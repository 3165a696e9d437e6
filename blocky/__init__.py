"""DNS ad-blocker toolkit: config, list caches, API endpoints, events, metrics and a control CLI."""

__version__ = "0.1.0"