"""
Audit notes for tier transitions
"""

from datetime import datetime, timezone
from typing import Optional
from loguru import logger

from .config import EngineConfig, get_config
from .data_access import DataAccessPort
from .models import AuditNote, RecordType, TierTransition


class AuditRecorder:
    """
    Appends a human-readable note to a loyalty card when its tier changes.

    Best effort: a failed write is logged and never undoes the tier change.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None, diagnostics=None):
        self.store = store
        self.config = config or get_config()
        self.logger = diagnostics or logger

    def record(self, card_id: str, transition: TierTransition, from_tier_name: Optional[str],
               to_tier_name: str, timestamp: Optional[datetime] = None) -> Optional[str]:
        """
        Create the audit note

        Returns:
            The note id, or None when the note could not be written
        """
        try:
            note = AuditNote(
                card_id=card_id,
                transition=transition,
                from_tier_name=from_tier_name,
                to_tier_name=to_tier_name,
                timestamp=timestamp or datetime.now(timezone.utc),
            )
            note_id = self.store.create_record(
                RecordType.ANNOTATION, note.to_fields(), timeout=self.config.store_timeout
            )
        except Exception as e:
            self.logger.error(f"Failed to write audit note for card {card_id} ({transition}): {e}")
            return None

        self.logger.info(f"{note.subject}: {note.note_text}")
        return note_id
