"""
Processing module - remote transcribe / extract abstraction layer.

Factory function for creating processing service instances based on
provider configuration.
"""

from .base import BaseProcessingService

__all__ = ["BaseProcessingService", "create_processing_service"]


def create_processing_service(provider: str = "http", **kwargs) -> BaseProcessingService:
    """
    Factory function to create a processing service based on provider.

    Args:
        provider: Processing provider name ("http")
        **kwargs: Provider-specific configuration

    Returns:
        BaseProcessingService implementation instance

    Raises:
        ValueError: If provider is unknown
    """
    if provider == "http":
        from .http import HttpProcessingService
        return HttpProcessingService(**kwargs)
    else:
        raise ValueError(f"Unknown processing provider: {provider}")
