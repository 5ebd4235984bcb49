from .base import BasePublisher, PublishOutcome, PublishSession
from .instagram_publisher import InstagramPublisher, MediaHost
from .linkedin_publisher import LinkedInPublisher
from .twitter_publisher import TwitterPublisher

__all__ = [
    "BasePublisher",
    "InstagramPublisher",
    "LinkedInPublisher",
    "MediaHost",
    "PublishOutcome",
    "PublishSession",
    "TwitterPublisher",
]
