"""
Events module for the Fulfillment Service.

Producers:
    - FulfillmentEventProducer: Publishes domain events staged by committed
      state transitions to the fulfillment topic

Consumers (``events.consumers``, started by ``core.events``):
    - PaymentProcessedHandler: Marks the order payment as completed
    - PaymentFailedHandler: Marks the order payment as failed
    - RefundProcessedHandler: Completes an approved return
    - FulfillmentEventConsumer: Manages event consumption and subscriptions

Event Types Supported:
    Order Events: order_item.status_changed, order.status_changed,
                  order.cancelled, order.handover_confirmed
    Return Events: return.requested, return.decided, return.completed
    Payout Events: payout.requested, payout.decided
    Consumed: payment.processed, payment.failed, refund.processed
"""

from .producers import FulfillmentEventProducer

__all__ = ["FulfillmentEventProducer"]
