"""Update feed service for the print agent's desktop builds."""

from .resolver import (
    FeedSettings,
    UnsignedArtifactError,
    UpdateDescriptor,
    UpdateFeedResolver,
    compareVersions,
)

__all__ = [
    'FeedSettings',
    'UnsignedArtifactError',
    'UpdateDescriptor',
    'UpdateFeedResolver',
    'compareVersions',
]
