"""
Media module - Media Routing Service abstraction layer.

Factory function for creating router instances based on provider configuration.
"""

from streamvault.core.exceptions import MediaRouterError

from .base import (
    PRODUCER_CLOSE,
    TRANSPORT_CLOSE,
    BaseConsumer,
    BaseMediaRouter,
    BaseProducer,
    BaseRelayTransport,
)

__all__ = [
    "PRODUCER_CLOSE",
    "TRANSPORT_CLOSE",
    "BaseConsumer",
    "BaseMediaRouter",
    "BaseProducer",
    "BaseRelayTransport",
    "create_media_router",
]


def create_media_router(provider: str, **kwargs) -> BaseMediaRouter:
    """Factory function to create a media router instance.

    Args:
        provider: Router provider name ("plain")
        **kwargs: Provider-specific configuration

    Returns:
        BaseMediaRouter implementation instance

    Raises:
        MediaRouterError: If provider is unknown
    """
    if provider == "plain":
        from .plain import PlainRtpRouter

        return PlainRtpRouter(**kwargs)
    raise MediaRouterError(f"Unknown media router provider: {provider}")
