from subscription_service.billing.state_machine import SubscriptionStateMachine, Transition
from subscription_service.billing.status_mapper import map_remote_status

__all__ = ["SubscriptionStateMachine", "Transition", "map_remote_status"]
