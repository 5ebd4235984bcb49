from .publishing_service import PublishingService
from .token_manager import TokenLifecycleManager

__all__ = ["PublishingService", "TokenLifecycleManager"]
