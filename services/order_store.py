"""
Order store adapter.

Every read and write of a print order goes through an OrderRepository.
The repository owns patch application, so the rules that must hold for
every writer are enforced in one place:

    - statusHistory, processLog and mixamInteractions are append-only
      (they cannot be patched, only appended to)
    - a change of fulfillmentStatus must come with exactly one history entry
    - mixamOrderId is written once and never changed, and no two orders
      may reference the same broker order
    - every update bumps ``version`` and ``updatedAt``

Concurrency:
    Writes are serialized with a threading.Lock (read-modify-write of one
    document). ``expected_version`` is a staleness check: by default a
    mismatch is logged and the write proceeds (last write wins); with
    ``strict_versioning=True`` it raises ConcurrentModificationError.

Implementations:
    InMemoryOrderRepository   - dict of documents (tests, development)
    JsonFileOrderRepository   - one JSON file per order in a directory
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from core.exceptions import ConcurrentModificationError, ConflictError, NotFoundError
from models.order import PrintOrder, ProcessLogEntry, StatusHistoryEntry, utc_now_iso
from models.status import FulfillmentStatus
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


APPEND_ONLY_KEYS = frozenset({"statusHistory", "processLog", "mixamInteractions"})
PROTECTED_KEYS = APPEND_ONLY_KEYS | {"id", "version", "createdAt", "updatedAt"}
DEFAULT_LIST_LIMIT = 100


class OrderRepository(ABC):
    """
    Storage-agnostic order repository.

    Subclasses provide three storage primitives (_load, _save, _all); the
    mutation rules live here.
    """

    def __init__(self, strict_versioning: bool = False):
        self.strict_versioning = strict_versioning
        self._lock = threading.Lock()

    # =========================================================================
    # STORAGE PRIMITIVES
    # =========================================================================

    @abstractmethod
    def _load(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Return a private copy of the stored document, or None."""

    @abstractmethod
    def _save(self, document: Dict[str, Any]) -> None:
        """Persist a document (replacing any previous version)."""

    @abstractmethod
    def _all(self) -> Iterable[Dict[str, Any]]:
        """Iterate private copies of all stored documents."""

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, order_id: str) -> PrintOrder:
        """
        Load an order.

        Raises:
            NotFoundError: If no order has this ID
        """
        document = self._load(order_id)
        if document is None:
            raise NotFoundError(f"Order not found: {order_id}", resource="order", resource_id=order_id)
        return PrintOrder.from_dict(document)

    def list_orders(
        self,
        statuses: Optional[Iterable[FulfillmentStatus]] = None,
        parent_uid: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[PrintOrder]:
        """Orders matching the filters, newest first."""
        wanted = {status.value for status in statuses} if statuses is not None else None
        documents = [
            doc for doc in self._all()
            if (wanted is None or doc.get("fulfillmentStatus") in wanted)
            and (parent_uid is None or doc.get("parentUid") == parent_uid)
        ]
        documents.sort(key=lambda doc: doc.get("createdAt", ""), reverse=True)
        return [PrintOrder.from_dict(doc) for doc in documents[:limit]]

    def find_by_mixam_order_id(self, mixam_order_id: str) -> Optional[PrintOrder]:
        for document in self._all():
            if document.get("mixamOrderId") == mixam_order_id:
                return PrintOrder.from_dict(document)
        return None

    # =========================================================================
    # WRITES
    # =========================================================================

    def create(self, order: PrintOrder) -> PrintOrder:
        """
        Store a new order at version 1.

        Raises:
            ConflictError: If an order with the same ID already exists
        """
        document = order.to_dict()
        now = utc_now_iso()
        document["version"] = 1
        document["createdAt"] = document.get("createdAt") or now
        document["updatedAt"] = now

        with self._lock:
            if self._load(order.id) is not None:
                raise ConflictError(f"Order already exists: {order.id}")
            self._save(document)

        logger.debug(f"Created order {order.id}")
        return PrintOrder.from_dict(copy.deepcopy(document))

    def update(
        self,
        order_id: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
        history: Optional[StatusHistoryEntry] = None,
        log: Sequence[ProcessLogEntry] = (),
    ) -> PrintOrder:
        """
        Apply a shallow patch of top-level document keys, plus audit appends.

        Args:
            order_id: Order to modify
            patch: camelCase document keys to overwrite
            expected_version: Version the caller read (staleness check)
            history: Status history entry; required iff the patch changes
                fulfillmentStatus
            log: Process log entries to append

        Returns:
            The updated order

        Raises:
            NotFoundError: Unknown order
            ConflictError: mixamOrderId rewrite or duplicate
            ConcurrentModificationError: Stale version under strict versioning
            ValueError: Patch touches a protected key, or a status change
                without a history entry
        """
        forbidden = PROTECTED_KEYS.intersection(patch)
        if forbidden:
            raise ValueError(f"Cannot patch protected keys: {sorted(forbidden)}")

        def mutation(document: Dict[str, Any]) -> None:
            self._check_version(order_id, document, expected_version)
            self._check_status_change(document, patch, history)
            self._check_mixam_order_id(order_id, document, patch)

            document.update(copy.deepcopy(patch))
            if history is not None:
                document.setdefault("statusHistory", []).append(history.to_dict())
            for entry in log:
                document.setdefault("processLog", []).append(entry.to_dict())

        return self._mutate(order_id, mutation, bump_version=True)

    def append_history(self, order_id: str, entry: StatusHistoryEntry) -> PrintOrder:
        """Append a history entry without changing status (annotations)."""
        return self._mutate(
            order_id,
            lambda document: document.setdefault("statusHistory", []).append(entry.to_dict()),
            bump_version=False,
        )

    def append_log(self, order_id: str, entry: ProcessLogEntry) -> PrintOrder:
        """Append one process log entry."""
        return self._mutate(
            order_id,
            lambda document: document.setdefault("processLog", []).append(entry.to_dict()),
            bump_version=False,
        )

    def append_interactions(self, order_id: str, records: Sequence[Dict[str, Any]]) -> PrintOrder:
        """Append broker interaction records."""
        return self._mutate(
            order_id,
            lambda document: document.setdefault("mixamInteractions", []).extend(copy.deepcopy(list(records))),
            bump_version=False,
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _mutate(self, order_id: str, mutation: Callable[[Dict[str, Any]], None], bump_version: bool) -> PrintOrder:
        with self._lock:
            document = self._load(order_id)
            if document is None:
                raise NotFoundError(f"Order not found: {order_id}", resource="order", resource_id=order_id)
            mutation(document)
            document["updatedAt"] = utc_now_iso()
            if bump_version:
                document["version"] = int(document.get("version", 1)) + 1
            self._save(document)
            return PrintOrder.from_dict(copy.deepcopy(document))

    def _check_version(self, order_id: str, document: Dict[str, Any], expected_version: Optional[int]) -> None:
        if expected_version is None:
            return
        actual = int(document.get("version", 1))
        if actual == expected_version:
            return
        if self.strict_versioning:
            raise ConcurrentModificationError(order_id, expected_version, actual)
        logger.warning(
            f"Order {order_id} changed since read (expected v{expected_version}, found v{actual}); "
            f"applying anyway"
        )

    @staticmethod
    def _check_status_change(
        document: Dict[str, Any],
        patch: Dict[str, Any],
        history: Optional[StatusHistoryEntry],
    ) -> None:
        new_status = patch.get("fulfillmentStatus")
        changes = new_status is not None and new_status != document.get("fulfillmentStatus")
        if changes and history is None:
            raise ValueError("A status change must append a statusHistory entry")
        if not changes and history is not None:
            raise ValueError("statusHistory entries are only appended on a status change")

    def _check_mixam_order_id(self, order_id: str, document: Dict[str, Any], patch: Dict[str, Any]) -> None:
        if "mixamOrderId" not in patch:
            return
        new_id = patch["mixamOrderId"]
        current = document.get("mixamOrderId")
        if current:
            if new_id != current:
                raise ConflictError(
                    f"Order {order_id} is already linked to broker order {current}",
                    {"mixam_order_id": current},
                )
            return
        if not new_id:
            return
        for other in self._all():
            if other.get("mixamOrderId") == new_id and other.get("id") != order_id:
                raise ConflictError(
                    f"Broker order {new_id} is already linked to order {other.get('id')}",
                    {"mixam_order_id": new_id},
                )


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryOrderRepository(OrderRepository):
    """Documents held in a dict. Contents are lost on restart."""

    def __init__(self, strict_versioning: bool = False):
        super().__init__(strict_versioning)
        self._documents: Dict[str, Dict[str, Any]] = {}

    def _load(self, order_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get(order_id)
        return copy.deepcopy(document) if document is not None else None

    def _save(self, document: Dict[str, Any]) -> None:
        self._documents[document["id"]] = copy.deepcopy(document)

    def _all(self) -> Iterable[Dict[str, Any]]:
        return [copy.deepcopy(document) for document in list(self._documents.values())]


# =============================================================================
# JSON FILES
# =============================================================================

SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class JsonFileOrderRepository(OrderRepository):
    """
    One ``<order_id>.json`` file per order.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash never leaves a half-written order.
    """

    def __init__(self, directory: Path, strict_versioning: bool = False):
        super().__init__(strict_versioning)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Order store: {self.directory}")

    def _path(self, order_id: str) -> Optional[Path]:
        if not SAFE_ID.match(order_id or ""):
            return None
        return self.directory / f"{order_id}.json"

    def _load(self, order_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(order_id)
        if path is None or not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def _save(self, document: Dict[str, Any]) -> None:
        path = self._path(document["id"])
        if path is None:
            raise ValueError(f"Unsafe order ID: {document['id']!r}")
        fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _all(self) -> Iterable[Dict[str, Any]]:
        documents = []
        for path in sorted(self.directory.glob("*.json")):
            with path.open("r", encoding="utf-8") as handle:
                documents.append(json.load(handle))
        return documents
