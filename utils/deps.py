from fastapi import Request
from utils.membership import MembershipPolicy
from utils.square_client import SquarePaymentSource
from utils.system_status import SystemStatus

def get_payment_source() -> SquarePaymentSource:
    return SquarePaymentSource()

def get_system_status(request: Request) -> SystemStatus:
    return request.app.state.system_status

def get_policy() -> MembershipPolicy:
    return MembershipPolicy.from_env()
