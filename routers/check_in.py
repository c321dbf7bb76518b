from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from pydantic import BaseModel
from db.init import get_db
from utils.admission import CheckInResult, process_check_in
from utils.deps import get_payment_source, get_system_status, get_policy
from utils.membership import MembershipPolicy
from utils.system_status import SystemStatus
import os

router = APIRouter()

SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID") or None

class CheckInRequest(BaseModel):
    phoneNumber: Optional[str] = None

@router.post("", response_model=CheckInResult, response_model_exclude_none=True)
def check_in(
    request: CheckInRequest,
    db: Session = Depends(get_db),
    source=Depends(get_payment_source),
    system_status: SystemStatus = Depends(get_system_status),
    policy: MembershipPolicy = Depends(get_policy)
):
    """
    Kiosk check-in. Always answers 200 with a verdict; rejections carry an error code.
    """
    return process_check_in(
        db,
        request.phoneNumber,
        source,
        system_status,
        policy=policy,
        location_id=SQUARE_LOCATION_ID
    )
