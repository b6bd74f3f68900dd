import logging

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """
    Development notifier used when no push gateway is configured.
    Offers are written to the log and always count as delivered.
    """

    def notify_rider_of_offer(self, rider_id, order_id, payload) -> bool:
        logger.info(f"[offer] rider={rider_id} order={order_id} payload={payload.to_dict()}")
        return True

    def revoke_offer(self, rider_id, order_id, reason) -> None:
        logger.info(f"[revoke] rider={rider_id} order={order_id} reason={reason}")
