from datetime import date
from typing import Any, Dict, Optional

from occasion_notifier.db.session import NotificationStore
from occasion_notifier.services.notifications.orchestrator import (
    OccasionSlot,
    RunOrchestrator,
)
from occasion_notifier.services.push.firebase_gateway import FirebasePushGateway
from occasion_notifier.utils.context import request_scope
from occasion_notifier.utils.datetime_utils import local_today
from occasion_notifier.utils.errors import PushGatewayError
from occasion_notifier.utils.logging import get_logger


async def run_occasion(
    occasion: OccasionSlot, request_id: str, today: Optional[date] = None
) -> Dict[str, Any]:
    """
    Build the store and gateway for one run, hand them to the orchestrator
    and release them afterwards.
    """
    with request_scope(request_id):
        logger = get_logger().bind(request_id=request_id)
        store = NotificationStore.from_settings()
        gateway = FirebasePushGateway.from_settings()

        try:
            store.connect()
        except Exception as e:
            # ping() reports the store as unreachable and the run records it
            logger.error("Store engine could not be created", error=str(e))

        try:
            gateway.connect()
        except PushGatewayError as e:
            logger.error("Push gateway could not be initialised", error=e.message)

        try:
            orchestrator = RunOrchestrator(store, gateway, logger)
            stats = await orchestrator.run(
                occasion.kind, occasion.slot, today or local_today()
            )
            return {
                "success": stats.store_ok and stats.error is None,
                "kind": occasion.kind.value,
                "slot": occasion.slot,
                "stats": stats.to_record(),
                "request_id": request_id,
            }
        finally:
            store.dispose()
