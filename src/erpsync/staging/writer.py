"""
Staging writer: idempotent upsert of remote records into staging storage.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..core.exceptions import MissingParentError, PersistenceError
from ..core.models import EntityType, ProcessingStatus, StagingRecord, utcnow
from ..core.stores import StagingStore
from .field_filter import FieldFilter


logger = logging.getLogger(__name__)


class StagingWriter:
    """
    Writes staging records keyed by (entity type, tenant id, remote id).

    A second write of the same key updates the existing record in place;
    no duplicate is ever created.
    """

    def __init__(self, store: StagingStore, field_filter: Optional[FieldFilter] = None):
        """
        Initialize the writer.

        Args:
            store: Staging storage backend
            field_filter: Payload filter (defaults to the standard exclusion list)
        """
        self.store = store
        self.field_filter = field_filter or FieldFilter()

    def upsert(
        self,
        entity_type: EntityType,
        remote_id: int,
        tenant_id: str,
        payload: Dict[str, Any],
        batch_id: str,
        sync_session_id: Optional[str] = None,
        parent_local_id: Optional[str] = None,
        parent_remote_id: Optional[int] = None,
    ) -> StagingRecord:
        """
        Insert or update one staging record.

        Returns:
            The stored record (existing local id on update)

        Raises:
            MissingParentError: Child record without a resolved parent
            PersistenceError: The store failed
        """
        if entity_type.is_child and not parent_local_id:
            raise MissingParentError(
                f"{entity_type.value} {remote_id} has no staged parent "
                f"(remote parent id {parent_remote_id})",
                remote_parent_id=parent_remote_id,
            )

        clean_payload = self.field_filter.apply(payload)

        try:
            existing = self.store.find(entity_type, remote_id, tenant_id)
            if existing is not None:
                existing.payload = clean_payload
                existing.batch_id = batch_id
                existing.sync_session_id = sync_session_id
                existing.processing_status = ProcessingStatus.PROCESSED
                existing.updated_at = utcnow()
                if entity_type.is_child:
                    existing.parent_local_id = parent_local_id
                    existing.parent_remote_id = parent_remote_id
                self.store.update(existing)
                logger.debug(f"Updated staged {entity_type.value} {remote_id}")
                return existing

            record = StagingRecord(
                entity_type=entity_type,
                remote_id=remote_id,
                tenant_id=tenant_id,
                payload=clean_payload,
                batch_id=batch_id,
                sync_session_id=sync_session_id,
                processing_status=ProcessingStatus.PROCESSED,
                parent_local_id=parent_local_id,
                parent_remote_id=parent_remote_id,
            )
            self.store.insert(record)
            logger.debug(f"Staged new {entity_type.value} {remote_id}")
            return record

        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to stage {entity_type.value} {remote_id}: {e}")
            raise PersistenceError(f"Failed to stage {entity_type.value} {remote_id}: {e}") from e

    def resolve_parent(self, remote_parent_id: Optional[int], tenant_id: str) -> Optional[str]:
        """Local id of the staged invoice with the given remote id, if any."""
        if remote_parent_id is None:
            return None
        parent = self.store.find(EntityType.INVOICE, remote_parent_id, tenant_id)
        return parent.local_id if parent else None

    def confirm_written(
        self,
        entity_type: EntityType,
        tenant_id: str,
        remote_ids: Iterable[int],
    ) -> List[int]:
        """
        Read back the given ids and return those not visible in storage.

        An empty result means every write of the phase is readable.
        """
        expected = list(dict.fromkeys(remote_ids))
        if not expected:
            return []
        found = set(self.store.find_existing_ids(entity_type, tenant_id, expected))
        return [remote_id for remote_id in expected if remote_id not in found]
