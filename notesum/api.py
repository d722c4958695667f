"""
Top-level entry point for a notesum store.

Wires configuration, storage backends, the change-gated publisher, the note
service and the summarization worker together for one store directory.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from .config import StoreConfig, load_or_create_config
from .paths import resolve_store_path
from .protocol import EventChannelProtocol, NoteStoreProtocol
from .providers import SummarizationProvider, get_registry
from .publisher import ChangeGatedPublisher
from .service import NoteService
from .types import Note, WriteOutcome
from .worker import SummarizationWorker

logger = logging.getLogger(__name__)


class NoteSum:
    """
    Note store with asynchronous, idempotent summarization.

    Example:
        ns = NoteSum()
        ns.add("Call the plumber about the kitchen sink")
        ns.process_pending()
        ns.get(note_id).summary
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        note_store: Optional[NoteStoreProtocol] = None,
        channel: Optional[EventChannelProtocol] = None,
        summarizer: Optional[SummarizationProvider] = None,
    ) -> None:
        """
        Open (or create) a store.

        Args:
            store_path: Store directory. Uses NOTESUM_STORE_PATH or ~/.notesum
                if not specified.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            note_store: Injected note store (skips backend creation).
            channel: Injected event channel (skips backend creation).
            summarizer: Injected summarization provider (skips the registry).
        """
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            self._store_path = resolve_store_path(
                Path(store_path) if store_path is not None else None
            )
            self._config = load_or_create_config(self._store_path)

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        if note_store is not None and channel is not None:
            self._note_store = note_store
            self._channel = channel
            self._is_local = False
        else:
            from .backend import create_stores
            bundle = create_stores(self._config)
            self._note_store = bundle.note_store
            self._channel = bundle.channel
            self._is_local = bundle.is_local

        # Created on first use so read-only commands never touch the network
        self._summarization_provider = summarizer
        self._provider_init_lock = threading.Lock()

        self._publisher = ChangeGatedPublisher(self._channel)
        self._service: Optional[NoteService] = None
        self._worker: Optional[SummarizationWorker] = None

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def channel(self) -> EventChannelProtocol:
        return self._channel

    @property
    def note_store(self) -> NoteStoreProtocol:
        return self._note_store

    def _get_summarization_provider(self) -> SummarizationProvider:
        """Get summarization provider, creating it lazily on first use."""
        with self._provider_init_lock:
            if self._summarization_provider is None:
                registry = get_registry()
                self._summarization_provider = registry.create_summarization(
                    self._config.summarization.name,
                    self._config.summarization.params,
                )
        return self._summarization_provider

    @property
    def service(self) -> NoteService:
        if self._service is None:
            self._service = _LazySummarizerService(
                self._note_store,
                self._publisher,
                self._get_summarization_provider,
                max_input_chars=self._config.pipeline.max_input_chars,
            )
        return self._service

    @property
    def worker(self) -> SummarizationWorker:
        if self._worker is None:
            self._worker = SummarizationWorker(
                self._note_store,
                self._channel,
                self._get_summarization_provider(),
                max_input_chars=self._config.pipeline.max_input_chars,
            )
        return self._worker

    # -------------------------------------------------------------------------
    # Notes
    # -------------------------------------------------------------------------

    def add(self, content: str, id: Optional[str] = None) -> WriteOutcome:
        return self.service.create_note(content, id=id)

    def update(self, id: str, content: str) -> WriteOutcome:
        return self.service.update_note(id, content)

    def get(self, id: str) -> Optional[Note]:
        return self.service.get_note(id)

    def delete(self, id: str) -> bool:
        return self.service.delete_note(id)

    def list_notes(
        self,
        query: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Note]:
        return self.service.list_notes(query, sort_by, sort_order, limit)

    def regenerate(self, id: str) -> Optional[Note]:
        return self.service.regenerate_summary(id)

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def process_pending(self, limit: Optional[int] = None) -> dict:
        """Run one worker batch. See SummarizationWorker.process_pending."""
        return self.worker.process_pending(
            limit=limit if limit is not None else self._config.pipeline.batch_size
        )

    def run_worker(
        self,
        *,
        max_batches: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        idle_sleep: float = 2.0,
    ) -> dict:
        logger.info("Worker started on %s", self._store_path)
        try:
            return self.worker.run(
                batch_size=self._config.pipeline.batch_size,
                idle_sleep=idle_sleep,
                max_batches=max_batches,
                stop_event=stop_event,
            )
        finally:
            logger.info("Worker stopped")

    def sweep(self, limit: int = 100) -> dict:
        return self.service.resubmit_unsummarized(limit=limit)

    def list_failed(self) -> list:
        return self._channel.list_dead_letters()

    def retry_failed(self) -> int:
        n = self._channel.redrive_dead_letters()
        if n:
            logger.info("Redrove %d dead-lettered event(s)", n)
        return n

    def status(self) -> dict:
        stats = self._channel.stats()
        return {
            "store_path": str(self._store_path),
            "provider": self._config.summarization.name,
            "notes": self._note_store.count(),
            "unsummarized": self._note_store.count_needing_summarization(),
            "queue": stats,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close stores and detach the ops log."""
        if getattr(self, "_channel", None) is not None:
            self._channel.close()
        if getattr(self, "_note_store", None) is not None:
            self._note_store.close()

        if getattr(self, "_ops_log_handler", None) is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection


class _LazySummarizerService(NoteService):
    """NoteService that resolves its summarizer only when regenerating."""

    def __init__(self, store, publisher, summarizer_factory, *, max_input_chars: int):
        super().__init__(store, publisher, None, max_input_chars=max_input_chars)
        self._summarizer_factory = summarizer_factory

    def regenerate_summary(self, id: str) -> Optional[Note]:
        if self._summarizer is None:
            self._summarizer = self._summarizer_factory()
        return super().regenerate_summary(id)
