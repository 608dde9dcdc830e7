"""
Broker interaction audit log.

Each broker round trip becomes one record on the order's append-only
``mixamInteractions`` list:

    {id, timestamp, orderId, mixamOrderId, direction, action, method,
     endpoint, payloadSummary, httpStatus | errorMessage, durationMs}

Successful calls, failed calls and calls that never got a response are all
recorded. Writing the audit record must not undo what already happened at
the broker, so a storage failure here is logged at ERROR and swallowed.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, Iterable, List, Optional

from models.broker import BrokerInteraction
from services.order_store import OrderRepository
from logging_config import get_logger, get_order_logger


# Module logger
logger = get_logger(__name__)


def new_interaction_id() -> str:
    """``mxi_<epoch ms>_<random>``: sortable and unique."""
    return f"mxi_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class InteractionLogger:
    """Persists broker interaction traces against orders."""

    def __init__(self, repository: OrderRepository):
        self.repository = repository

    @staticmethod
    def to_record(
        interaction: BrokerInteraction,
        order_id: str,
        mixam_order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        record = {"id": new_interaction_id(), "orderId": order_id}
        record.update(interaction.to_dict())
        if mixam_order_id:
            record["mixamOrderId"] = mixam_order_id
        return record

    def record(
        self,
        order_id: str,
        interactions: Iterable[BrokerInteraction],
        mixam_order_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Append a trace to the order.

        Args:
            order_id: Local order the calls were made for
            interactions: Trace from a broker result or BrokerError
            mixam_order_id: Broker order ID, when known

        Returns:
            The records written (empty if there was nothing to write or the
            write failed)
        """
        records = [self.to_record(i, order_id, mixam_order_id) for i in interactions]
        if not records:
            return []

        order_logger = get_order_logger(order_id)
        try:
            self.repository.append_interactions(order_id, records)
        except Exception as e:
            logger.error(
                f"Failed to log {len(records)} broker interactions for order {order_id}: {e}",
                exc_info=True,
            )
            return []

        order_logger.info(
            "Logged broker interactions: "
            + ", ".join(f"{r['action']}:{r.get('httpStatus', r.get('errorMessage'))}" for r in records)
        )
        return records
