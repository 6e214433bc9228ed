"""Chat exchanges: documents, the stream registry and the orchestrator."""

from .document import ChatDocument, FileChatDocument, MemoryChatDocument
from .model_suggest import ModelTrigger, apply_suggestion, filter_models, find_model_trigger
from .naming import default_chat_name, is_default_name, sanitize_title, summary_file_name
from .orchestrator import ChatOrchestrator, ExchangeResult, ExchangeStatus
from .registry import StreamRegistry

__all__ = [
    "ChatDocument",
    "FileChatDocument",
    "MemoryChatDocument",
    "ModelTrigger",
    "apply_suggestion",
    "filter_models",
    "find_model_trigger",
    "default_chat_name",
    "is_default_name",
    "sanitize_title",
    "summary_file_name",
    "ChatOrchestrator",
    "ExchangeResult",
    "ExchangeStatus",
    "StreamRegistry",
]
