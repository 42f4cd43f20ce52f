"""Channel formatting: turns a final AIResponse into outbound message chunks."""

import re
from abc import ABC, abstractmethod
from typing import List

from aida.services.response_types import AIResponse

DEFAULT_MAX_MESSAGE_LENGTH = 500

_HEADING_RE = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

# paragraph, sentence, word
_SPLIT_LEVELS = (
    (re.compile(r"\n\s*\n"), "\n\n"),
    (re.compile(r"(?<=[.!?])\s+"), " "),
    (re.compile(r"\s+"), " "),
)


class MessageFormatter(ABC):
    @abstractmethod
    def format(self, response: AIResponse, max_message_length: int, style: str) -> List[str]:
        pass


def to_whatsapp_markup(text: str) -> str:
    """Markdown headings and **bold** become WhatsApp *bold*."""
    text = _HEADING_RE.sub(r"*\1*", text)
    text = _BOLD_RE.sub(r"*\1*", text)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def split_message(text: str, max_length: int, level: int = 0) -> List[str]:
    text = text.strip()
    if not text:
        return []
    if len(text) <= max_length:
        return [text]
    if level >= len(_SPLIT_LEVELS):
        return [text[i : i + max_length] for i in range(0, len(text), max_length)]

    pattern, joiner = _SPLIT_LEVELS[level]
    chunks: List[str] = []
    current = ""
    for piece in pattern.split(text):
        piece = piece.strip()
        if not piece:
            continue
        if len(piece) > max_length:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(split_message(piece, max_length, level + 1))
            continue
        candidate = f"{current}{joiner}{piece}" if current else piece
        if len(candidate) <= max_length:
            current = candidate
        else:
            chunks.append(current)
            current = piece
    if current:
        chunks.append(current)
    return chunks


class WhatsAppFormatter(MessageFormatter):
    """Splits replies into WhatsApp-sized messages.

    Style does not change the WhatsApp rendering; tone is set at generation time.
    """

    def format(self, response: AIResponse, max_message_length: int, style: str) -> List[str]:
        if max_message_length <= 0:
            max_message_length = DEFAULT_MAX_MESSAGE_LENGTH
        return split_message(to_whatsapp_markup(response.content or ""), max_message_length)
