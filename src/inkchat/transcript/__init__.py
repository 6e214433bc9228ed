"""Chat transcript encoding: turn markers, frontmatter and inline images."""

from .codec import (
    FENCE_TAG,
    MarkerSpan,
    count_turns,
    decode,
    decode_with_images,
    encode_marker,
    encode_turn,
    has_any_marker,
    scan_markers,
    trim_all_bodies,
)
from .frontmatter import DocumentOverrides, read_frontmatter
from .images import AttachmentResolver, ImageExtractor, VaultAttachmentResolver, mime_type_for
from .models import ChatImage, Role, Turn

__all__ = [
    "FENCE_TAG",
    "MarkerSpan",
    "count_turns",
    "decode",
    "decode_with_images",
    "encode_marker",
    "encode_turn",
    "has_any_marker",
    "scan_markers",
    "trim_all_bodies",
    "DocumentOverrides",
    "read_frontmatter",
    "AttachmentResolver",
    "ImageExtractor",
    "VaultAttachmentResolver",
    "mime_type_for",
    "ChatImage",
    "Role",
    "Turn",
]
