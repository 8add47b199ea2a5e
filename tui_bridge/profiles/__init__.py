"""
Filter profile registry.

Usage:
    from tui_bridge.profiles import get_profile
    profile = get_profile("qwen")
    classifier = profile.classifier()
    classifier.classify("✦ Hello there")
"""

from typing import Optional

from .base import (
    BaseProfile,
    Classification,
    FilterRule,
    NoiseClassifier,
    CONTENT,
    DECORATIVE,
    TAGGED,
)
from .generic import GenericProfile
from .qwen import QwenProfile

__all__ = [
    "BaseProfile",
    "Classification",
    "FilterRule",
    "NoiseClassifier",
    "GenericProfile",
    "QwenProfile",
    "CONTENT",
    "DECORATIVE",
    "TAGGED",
    "get_profile",
    "register_profile",
    "available_profiles",
]

# Built-in profile registry
_REGISTRY: dict[str, type[BaseProfile]] = {
    "qwen": QwenProfile,
    "generic": GenericProfile,
}


def register_profile(name: str, profile_class: type[BaseProfile]) -> None:
    """Register a custom profile class."""
    _REGISTRY[name] = profile_class


def available_profiles() -> list:
    return sorted(_REGISTRY)


def get_profile(name: str, display_name: Optional[str] = None) -> BaseProfile:
    """Get a profile instance by name. Falls back to GenericProfile.

    Args:
        name: Profile identifier (e.g. "qwen", "generic").
        display_name: Optional override for display name.
    """
    cls = _REGISTRY.get(name, GenericProfile)
    profile = cls()
    if display_name:
        profile._display_name = display_name
    return profile
