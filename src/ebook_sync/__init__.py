"""Mirror an ebook library into a note-taking app and search for books."""

from ebook_sync.api import LibraryApi
from ebook_sync.core.jobs.orchestrator import JobOrchestrator, PollOutcome, PollTask
from ebook_sync.core.search.queue import SearchQueueProcessor
from ebook_sync.core.tree.builder import FlatStructure, NestedStructure, build_tree
from ebook_sync.protocols import SearchApiProtocol, StoreProtocol, SyncApiProtocol

__all__ = [
    "FlatStructure",
    "JobOrchestrator",
    "LibraryApi",
    "NestedStructure",
    "PollOutcome",
    "PollTask",
    "SearchApiProtocol",
    "SearchQueueProcessor",
    "StoreProtocol",
    "SyncApiProtocol",
    "build_tree",
]
