from .user import User
from .project import Project, ProjectUser
from .deal import Contract, Order
from .bonus import Bonus
from .payment_request import PaymentRequest, SettlementLink
from .agent_payment import AgentPayment, AgentPaymentBonus

__all__ = [
    "User",
    "Project",
    "ProjectUser",
    "Contract",
    "Order",
    "Bonus",
    "PaymentRequest",
    "SettlementLink",
    "AgentPayment",
    "AgentPaymentBonus",
]
