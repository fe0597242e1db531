"""Message, sender and status vocabularies plus the localized media labels."""

from enum import StrEnum


class SenderKind(StrEnum):
    """Who produced a message."""

    INTERNAL_AGENT = "internal_agent"
    EXTERNAL_CONTACT = "external_contact"
    AI_AGENT = "ai_agent"


class MediaType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"


class ConversationStatusValue(StrEnum):
    UNREAD = "unread"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


GENERIC_MEDIA_PLACEHOLDER = "[Mídia]"
DEFAULT_CONTACT_NAME = "Cliente"

# Stored content once an inline payload has been offloaded, keyed by coarse category
MEDIA_PLACEHOLDERS: dict[str, str] = {
    "image": "[Imagem]",
    "audio": "[Áudio]",
    "video": "[Vídeo]",
    "document": "[Documento]",
}

# Conversation list preview for media messages
MEDIA_PREVIEW_LABELS: dict[MediaType, str] = {
    MediaType.IMAGE: "📷 Imagem",
    MediaType.AUDIO: "🎵 Áudio",
    MediaType.VIDEO: "🎥 Vídeo",
    MediaType.DOCUMENT: "📄 Documento",
    MediaType.STICKER: "🖼️ Figurinha",
}


def media_category(media_type: MediaType | str) -> str:
    """Coarse category used for placeholders: stickers are images."""
    value = MediaType(media_type)
    if value == MediaType.STICKER:
        return "image"
    return value.value


def placeholder_for(media_type: MediaType | str) -> str:
    return MEDIA_PLACEHOLDERS.get(media_category(media_type), GENERIC_MEDIA_PLACEHOLDER)


def placeholder_for_mime(mime_type: str) -> str:
    """Placeholder when only the MIME type is known (legacy rows being migrated)."""
    if mime_type.startswith("image/"):
        return MEDIA_PLACEHOLDERS["image"]
    if mime_type.startswith("audio/"):
        return MEDIA_PLACEHOLDERS["audio"]
    if mime_type.startswith("video/"):
        return MEDIA_PLACEHOLDERS["video"]
    if mime_type == "application/pdf":
        return MEDIA_PLACEHOLDERS["document"]
    return GENERIC_MEDIA_PLACEHOLDER
