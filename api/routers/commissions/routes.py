from fastapi import APIRouter, Depends

from api.crud.commission import CommissionLedger
from api.crud.commission.schema import CommissionRead, RecordedCommission, ReferredOrder
from api.crud.errors import DuplicateOrder
from api.routers.deps import get_commission_ledger
from api.routers.responses import Ok

router = APIRouter()


@router.post("/orders", response_model=Ok[RecordedCommission], summary="Completed order with a referral code")
async def record_referred_order(
    dto: ReferredOrder,
    ledger: CommissionLedger = Depends(get_commission_ledger),
):
    # a replayed order is success for the order service, answered with the entry it already created
    try:
        entry = await ledger.record_referred_order(
            dto.referral_code, dto.order_id, dto.referred_user_id, dto.order_amount
        )
        created = True
    except DuplicateOrder as e:
        entry = await ledger.get_entry(e.entry_id)
        created = False
    return Ok(value=RecordedCommission(created=created, entry=CommissionRead.model_validate(entry)))
