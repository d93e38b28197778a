"""Services package."""

from .attribution import AttributionEngine
from .broadcast import BroadcastRunner, DeliveryFailure, DeliveryReport
from .contests import ContestLifecycleManager, rank_invitations
from .invitations import InvitationIssuer, parse_start_payload
from .scheduler import ContestScheduler
from .throttle import SendThrottle

__all__ = [
    "AttributionEngine",
    "BroadcastRunner",
    "DeliveryFailure",
    "DeliveryReport",
    "ContestLifecycleManager",
    "rank_invitations",
    "InvitationIssuer",
    "parse_start_payload",
    "ContestScheduler",
    "SendThrottle",
]
