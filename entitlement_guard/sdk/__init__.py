"""
SDK for Entitlement Guard.

Provides metered wrappers around feature-execution collaborators.
"""

from .openai_client import GuardedContentGenerator

__all__ = ["GuardedContentGenerator"]
