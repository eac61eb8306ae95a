"""
Extract displayable text from WhatsApp message payloads (Baileys format)
"""
from typing import Any, Dict, Optional

UNSUPPORTED_MESSAGE = "[Mensagem não suportada]"

# Wrappers whose "message" field holds the real content
_WRAPPERS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "documentWithCaptionMessage",
)

_TYPE_KEYS = (
    ("conversation", "text"),
    ("extendedTextMessage", "text"),
    ("imageMessage", "image"),
    ("videoMessage", "video"),
    ("audioMessage", "audio"),
    ("documentMessage", "document"),
    ("locationMessage", "location"),
    ("liveLocationMessage", "location"),
    ("stickerMessage", "sticker"),
    ("contactMessage", "contact"),
    ("reactionMessage", "reaction"),
)


def _unwrap(message: Dict[str, Any]) -> Dict[str, Any]:
    for wrapper in _WRAPPERS:
        inner = message.get(wrapper)
        if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
            return _unwrap(inner["message"])
    return message


def detect_message_type(message: Optional[Dict[str, Any]]) -> str:
    """Return the message kind: text, image, video, audio, document, ..."""
    if not message:
        return "unknown"

    message = _unwrap(message)
    for key, kind in _TYPE_KEYS:
        value = message.get(key)
        if value or isinstance(value, dict):
            return kind
    return "unknown"


def extract_message_content(message: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Extract the text shown to agents for a WhatsApp message

    Media messages are rendered as a bracketed label followed by the caption,
    e.g. "[Imagem] foto do produto".

    Args:
        message: The "message" object of a MESSAGES_UPSERT event

    Returns:
        Text content, a placeholder for unsupported types, or None when empty
    """
    if not message:
        return None

    message = _unwrap(message)

    if message.get("conversation"):
        return message["conversation"]

    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return extended["text"]

    if isinstance(message.get("imageMessage"), dict):
        caption = message["imageMessage"].get("caption") or ""
        return f"[Imagem] {caption}".strip()

    if isinstance(message.get("videoMessage"), dict):
        caption = message["videoMessage"].get("caption") or ""
        return f"[Vídeo] {caption}".strip()

    if isinstance(message.get("audioMessage"), dict):
        return "[Áudio]"

    if isinstance(message.get("documentMessage"), dict):
        document = message["documentMessage"]
        file_name = document.get("fileName") or document.get("title") or "arquivo"
        caption = document.get("caption") or ""
        return f"[Documento: {file_name}] {caption}".strip()

    if isinstance(message.get("locationMessage"), dict) or isinstance(message.get("liveLocationMessage"), dict):
        return "[Localização]"

    if isinstance(message.get("stickerMessage"), dict):
        return "[Sticker]"

    if isinstance(message.get("contactMessage"), dict):
        name = message["contactMessage"].get("displayName") or "sem nome"
        return f"[Contato: {name}]"

    if isinstance(message.get("reactionMessage"), dict):
        return f"[Reação: {message['reactionMessage'].get('text', '')}]"

    return UNSUPPORTED_MESSAGE
