"""
Reconciliation: decide whether a document is created, updated or skipped,
then perform that write.
"""

import logging
from enum import Enum
from typing import Optional

from .errors import DocumentValidationError
from .models import ExistingRecord, NormalizedDocument, Origin

logger = logging.getLogger(__name__)


class Decision(Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP_UNPUBLISHED = "skip_unpublished"
    SKIP_UNCHANGED = "skip_unchanged"

    @property
    def is_skip(self) -> bool:
        return self in (Decision.SKIP_UNPUBLISHED, Decision.SKIP_UNCHANGED)


class ReconciliationEngine:
    """Compares a document with its stored row and writes it when needed."""

    def __init__(self, store):
        self.store = store

    def lookup(self, doc: NormalizedDocument) -> Optional[ExistingRecord]:
        if doc.origin is Origin.NOTION:
            return self.store.find_by_notion_id(doc.natural_key)
        return self.store.find_by_slug(doc.natural_key)

    def decide(
        self,
        doc: NormalizedDocument,
        force: bool = False,
    ) -> tuple[Decision, Optional[ExistingRecord]]:
        """
        Decide what to do with a document.

        Unpublished documents are skipped before the store is consulted.
        A stored row wins unless the incoming edit time is strictly newer
        or ``force`` is set.

        Raises:
            DocumentValidationError: If the document has no natural key.
        """
        if not doc.flags.published:
            return Decision.SKIP_UNPUBLISHED, None

        if not doc.natural_key:
            raise DocumentValidationError("Document has no identifier", missing_fields=["natural_key"])

        existing = self.lookup(doc)
        if existing is None:
            return Decision.CREATE, None

        if not force and existing.last_edited_time is not None:
            if doc.last_modified_at <= existing.last_edited_time:
                return Decision.SKIP_UNCHANGED, existing

        return Decision.UPDATE, existing

    def apply(
        self,
        decision: Decision,
        doc: NormalizedDocument,
        existing: Optional[ExistingRecord] = None,
    ) -> Optional[int]:
        """
        Write the document as decided.

        Returns:
            The row id written, or None for a skip.
        """
        if decision.is_skip:
            return None

        record = doc.to_record()
        if decision is Decision.CREATE:
            row_id = self.store.insert(record)
            logger.info("Created %s (row %s)", doc.title, row_id)
            return row_id

        if existing is None:
            raise ValueError("UPDATE needs the existing record")
        self.store.update(existing.id, record)
        logger.info("Updated %s (row %s)", doc.title, existing.id)
        return existing.id
