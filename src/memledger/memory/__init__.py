"""Memory domain — sessions, the pointer protocol and its wire documents.

``memledger.memory.summarization`` and ``memledger.memory.chat`` depend on
``memledger.llm`` and are imported from their modules directly.
"""

from memledger.memory.cleanup import CleanupQueue
from memledger.memory.context import SessionContext
from memledger.memory.pointer import PersistResult
from memledger.memory.pointer import PointerProtocol
from memledger.memory.schemas import AgentIdentity
from memledger.memory.schemas import ChatMessage
from memledger.memory.schemas import ChatSummaryDocument
from memledger.memory.schemas import MemorySource
from memledger.memory.schemas import PointerIndex
from memledger.memory.schemas import RunOutcome
from memledger.memory.schemas import SummaryInput
from memledger.memory.session import SessionCache
from memledger.memory.state import SessionState

__all__ = [
    "AgentIdentity",
    "ChatMessage",
    "ChatSummaryDocument",
    "CleanupQueue",
    "MemorySource",
    "PersistResult",
    "PointerIndex",
    "PointerProtocol",
    "RunOutcome",
    "SessionCache",
    "SessionContext",
    "SessionState",
    "SummaryInput",
]
