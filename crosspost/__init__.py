"""
Cross-platform publishing engine.

Publishes one logical post to Twitter/X, LinkedIn and Instagram accounts,
keeping OAuth tokens fresh and absorbing platform-specific media pipelines.
"""

__version__ = "0.1.0"
