"""Canned replies used when every upstream retrieval strategy comes back empty."""

from __future__ import annotations

from typing import Tuple

# Checked in order; the first keyword contained in the lower-cased message wins.
KEYWORD_REPLIES: Tuple[Tuple[str, str], ...] = (
    ("hello", "Hello! How can I help you today?"),
    ("你好", "你好！我是AI助手，很高兴为您服务！"),
    ("谢谢", "不客气！如果您还有其他问题，请随时告诉我。"),
    ("thank you", "You're very welcome! Feel free to ask if you need anything else."),
    ("thanks", "You're welcome! Is there anything else I can help you with?"),
    ("help", "I'm here to help! Please let me know what you need assistance with."),
    ("who", "I'm an AI assistant. How may I assist you today?"),
    ("what", "I'm an AI assistant created to help answer questions and have conversations."),
    ("how", "I can help you with various questions and tasks. What would you like to know?"),
    ("hi", "Hi there! What can I do for you?"),
)

CHINESE_APOLOGY = (
    "抱歉，我目前无法处理您的请求。这可能是由于网络连接问题或服务暂时不可用。"
    "请稍后再试，或者重新表述您的问题。"
)
ENGLISH_APOLOGY = (
    "I apologize, but I'm currently unable to process your request. "
    "This might be due to network connectivity issues or temporary service unavailability. "
    "Please try again later or rephrase your question."
)


def contains_cjk(text: str) -> bool:
    """True if text has any CJK Unified Ideograph (U+4E00..U+9FFF)."""
    return any("\u4e00" <= ch <= "\u9fff" for ch in text or "")


def generate_fallback_response(
    message: str,
    table: Tuple[Tuple[str, str], ...] = KEYWORD_REPLIES,
) -> str:
    """Return a keyword-matched canned reply, or a language-matched apology. Never empty."""
    low = (message or "").lower()
    for keyword, reply in table:
        if keyword in low:
            return reply
    if contains_cjk(low):
        return CHINESE_APOLOGY
    return ENGLISH_APOLOGY
