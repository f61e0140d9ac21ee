"""Model name translation and chat request types for You2Api."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

log = logging.getLogger("you2api")

DEFAULT_VENDOR_MODEL = "deepseek_v3"
DEFAULT_PUBLIC_MODEL = "deepseek-chat"

# Public (OpenAI-style) id -> vendor id.
MODEL_TABLE: Tuple[Tuple[str, str], ...] = (
    ("deepseek-reasoner", "deepseek_r1"),
    ("deepseek-chat", "deepseek_v3"),
    ("o3-mini-high", "openai_o3_mini_high"),
    ("o3-mini-medium", "openai_o3_mini_medium"),
    ("o1", "openai_o1"),
    ("o1-mini", "openai_o1_mini"),
    ("o1-preview", "openai_o1_preview"),
    ("gpt-4o", "gpt_4o"),
    ("gpt-4o-mini", "gpt_4o_mini"),
    ("gpt-4-turbo", "gpt_4_turbo"),
    ("gpt-3.5-turbo", "gpt_3_5"),
    ("claude-3-opus", "claude_3_opus"),
    ("claude-3-sonnet", "claude_3_sonnet"),
    ("claude-3.5-sonnet", "claude_3_5_sonnet"),
    ("claude-3.5-haiku", "claude_3_5_haiku"),
    ("gemini-1.5-pro", "gemini_1_5_pro"),
    ("gemini-1.5-flash", "gemini_1_5_flash"),
    ("llama-3.2-90b", "llama3_2_90b"),
    ("llama-3.1-405b", "llama3_1_405b"),
    ("mistral-large-2", "mistral_large_2"),
    ("qwen-2.5-72b", "qwen2p5_72b"),
    ("qwen-2.5-coder-32b", "qwen2p5_coder_32b"),
    ("command-r-plus", "command_r_plus"),
)


@dataclass(frozen=True)
class ModelNameMap:
    """
    Bidirectional public <-> vendor model name mapping.

    Lookups never fail: unknown names degrade to the configured defaults, and
    the two defaults are not inverses of each other, so a round trip is only
    faithful for names present in the table.
    """

    forward: Mapping[str, str]
    default_vendor: str = DEFAULT_VENDOR_MODEL
    default_public: str = DEFAULT_PUBLIC_MODEL
    reverse: Mapping[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        frozen = MappingProxyType(dict(self.forward))
        object.__setattr__(self, "forward", frozen)
        object.__setattr__(
            self, "reverse", MappingProxyType({v: k for k, v in frozen.items()})
        )

    @classmethod
    def from_table(cls, table: Tuple[Tuple[str, str], ...] = MODEL_TABLE) -> ModelNameMap:
        return cls(forward=dict(table))

    def to_vendor_model(self, public_model: Optional[str]) -> str:
        return self.forward.get(public_model or "", self.default_vendor)

    def to_public_model(self, vendor_model: Optional[str]) -> str:
        return self.reverse.get(vendor_model or "", self.default_public)

    def public_models(self) -> Tuple[str, ...]:
        return tuple(self.forward.keys())


def normalize_message_content(content: Any) -> str:
    """Flatten OpenAI message content (string or content parts) to plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                parts.append(part["text"])
            elif isinstance(part, str):
                parts.append(part)
        return "".join(parts)
    if isinstance(content, dict):
        if content.get("type") == "text" and isinstance(content.get("text"), str):
            return content["text"]
    return str(content)


@dataclass(frozen=True)
class ChatMessage:
    """One message of an inbound chat history."""

    role: str
    content: str

    @classmethod
    def from_dict(cls, data: Any) -> ChatMessage:
        if not isinstance(data, dict):
            raise ValueError("Invalid request: each message must be an object")
        role = data.get("role")
        role = role.strip().lower() if isinstance(role, str) and role.strip() else "user"
        return cls(role=role, content=normalize_message_content(data.get("content")))

    def to_history_entry(self) -> Dict[str, str]:
        """Vendor history pair: assistant turns fill `answer`, everything else `question`."""
        if self.role == "assistant":
            return {"question": "", "answer": self.content}
        return {"question": self.content, "answer": ""}


@dataclass(frozen=True)
class ChatRequest:
    """Parsed OpenAI chat-completion request."""

    model: str
    messages: Tuple[ChatMessage, ...]
    stream: bool = False

    @classmethod
    def from_body(cls, body: Any) -> ChatRequest:
        """
        Build a request from a decoded JSON body.

        Raises ValueError for anything the HTTP layer should answer with 400.
        """
        if not isinstance(body, dict):
            raise ValueError("Invalid JSON body: expected object")

        messages = body.get("messages")
        if not isinstance(messages, list):
            raise ValueError("Invalid request: 'messages' field must be an array")
        if not messages:
            raise ValueError("Invalid request: 'messages' array cannot be empty")

        stream = body.get("stream")
        if stream is None:
            stream = False
        elif not isinstance(stream, bool):
            raise ValueError("Invalid request: 'stream' must be a boolean")

        raw_model = body.get("model")
        model = raw_model.strip() if isinstance(raw_model, str) else ""

        return cls(
            model=model,
            messages=tuple(ChatMessage.from_dict(m) for m in messages),
            stream=stream,
        )

    @property
    def last_message(self) -> str:
        return self.messages[-1].content

    def history(self) -> list[Dict[str, str]]:
        return [m.to_history_entry() for m in self.messages]

    def response_model(self, model_map: ModelNameMap) -> str:
        """Model id echoed back to the client."""
        if self.model:
            return self.model
        return model_map.to_public_model(model_map.to_vendor_model(self.model))
