from .dialogs import DialogService
from .manager import DialogSessionManager, SessionState
from .streaming import IngestionResult, StreamingIngestionPipeline

__all__ = [
    "DialogService",
    "DialogSessionManager",
    "IngestionResult",
    "SessionState",
    "StreamingIngestionPipeline",
]
