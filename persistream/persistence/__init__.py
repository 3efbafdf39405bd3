"""Stream ledger persistence layer.

Provides SQLite-backed storage for streams and their append-only chunks,
with export (JSON/Markdown), timeout sweeps and bulk cleanup.
"""

from persistream.persistence.database import close_db, init_db
from persistream.persistence.export import export_json, export_markdown
from persistream.persistence.ledger import StreamLedger

__all__ = [
    "StreamLedger",
    "close_db",
    "export_json",
    "export_markdown",
    "init_db",
]
