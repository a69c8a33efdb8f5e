from devmentor.memory.attachments import AttachmentStore, ImagePayload
from devmentor.memory.context_store import ContextStore
from devmentor.memory.events import EventEmitter
from devmentor.memory.message_store import MessageStore
from devmentor.memory.models import (
    ImageAttachment,
    MessageMetadata,
    MessageRecord,
    Page,
    SessionRecord,
    StoredContext,
    ToolCall,
)
from devmentor.memory.session_manager import SessionManager
from devmentor.memory.store import MemoryStore

__all__ = [
    "AttachmentStore",
    "ContextStore",
    "EventEmitter",
    "ImageAttachment",
    "ImagePayload",
    "MemoryStore",
    "MessageMetadata",
    "MessageRecord",
    "MessageStore",
    "Page",
    "SessionManager",
    "SessionRecord",
    "StoredContext",
    "ToolCall",
]
