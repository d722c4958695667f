"""
Pluggable storage backend factory.

Creates the note store and event channel based on configuration. The local
backend uses two SQLite databases in the store directory. External backends
register via the ``notesum.backends`` entry point group.

External backend packages provide a factory function::

    def create_stores(config: StoreConfig) -> StoreBundle:
        ...

and register it in their pyproject.toml::

    [project.entry-points."notesum.backends"]
    my-backend = "my_package.backend:create_stores"
"""

from typing import NamedTuple

from .config import StoreConfig
from .protocol import EventChannelProtocol, NoteStoreProtocol

NOTES_DB_FILENAME = "notes.db"
EVENTS_DB_FILENAME = "events.db"


class StoreBundle(NamedTuple):
    """Storage backends returned by the factory."""
    note_store: NoteStoreProtocol
    channel: EventChannelProtocol
    is_local: bool  # True for filesystem-backed stores

    def close(self) -> None:
        self.channel.close()
        self.note_store.close()


def create_stores(config: StoreConfig) -> StoreBundle:
    """
    Create storage backends from configuration.

    For ``backend = "local"`` (default), creates a SQLite NoteStore and a
    SQLite EventChannel configured from ``[pipeline]``.

    For other values, loads the backend via the ``notesum.backends`` entry
    point group.
    """
    if config.backend == "local":
        return _create_local_stores(config)
    return _load_backend(config.backend, config)


def _create_local_stores(config: StoreConfig) -> StoreBundle:
    """Create the default local storage backends."""
    from .channel import EventChannel
    from .note_store import NoteStore

    store_path = config.path
    note_store = NoteStore(store_path / NOTES_DB_FILENAME)
    channel = EventChannel(
        store_path / EVENTS_DB_FILENAME,
        max_deliveries=config.pipeline.max_deliveries,
        visibility_timeout=config.pipeline.visibility_timeout,
    )
    return StoreBundle(note_store=note_store, channel=channel, is_local=True)


def _load_backend(name: str, config: StoreConfig) -> StoreBundle:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="notesum.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. No backends registered."
    )
