"""Earn positions API."""

from fastapi import APIRouter, Depends

from earn.api.deps import get_orchestrator, require_admin
from earn.schemas.position import (
    CompletedRequest,
    DepositObservedRequest,
    DepositQuoteRequest,
    DepositQuoteSchema,
    EarningsPoint,
    OwnerStats,
    PoolRead,
    PositionCreate,
    PositionSummary,
    ProtocolInfoRead,
    WithdrawalFee,
    WithdrawRequest,
)
from earn.services.orchestrator import Orchestrator

router = APIRouter(prefix="/api/earn", tags=["earn"])


@router.get("/protocol", response_model=ProtocolInfoRead)
async def protocol_info(orchestrator: Orchestrator = Depends(get_orchestrator)):
    info = await orchestrator.get_protocol_info()
    return ProtocolInfoRead(**info.__dict__)


@router.get("/pools/top", response_model=list[PoolRead])
async def top_pools(limit: int = 10, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Pools ranked by APY, for choosing ``pool_id`` when opening a position."""
    pools = await orchestrator.get_top_pools(limit)
    return [PoolRead(**p.__dict__) for p in pools]


@router.post("/deposit/quote", response_model=DepositQuoteSchema)
async def deposit_quote(body: DepositQuoteRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Bridge address and expected net amount for a planned deposit."""
    quote = await orchestrator.get_deposit_quote(body.owner_address, body.amount)
    return DepositQuoteSchema.from_quote(quote)


@router.post("/positions", status_code=201)
async def create_position(body: PositionCreate, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return await orchestrator.create_position(
        owner_address=body.owner_address,
        amount=body.amount,
        quote=body.quote.to_quote() if body.quote else None,
        pool_id=body.pool_id,
        extra=body.extra,
    )


@router.get("/positions/owner/{owner_address}")
def list_owner_positions(
    owner_address: str,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_positions_for_owner(owner_address, status=status, limit=limit, offset=offset)


@router.get("/positions/{position_id}")
def get_position(
    position_id: str,
    owner_address: str | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_position(position_id, owner_address)


@router.get("/positions/{position_id}/summary", response_model=PositionSummary)
def position_summary(
    position_id: str,
    owner_address: str | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return orchestrator.summarize(orchestrator.get_position(position_id, owner_address))


@router.get("/positions/{position_id}/earnings-history", response_model=list[EarningsPoint])
def earnings_history(
    position_id: str,
    days: int = 30,
    owner_address: str | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    days = max(1, min(days, 365))
    return orchestrator.get_earnings_history(position_id, days=days, owner_address=owner_address)


@router.get("/owners/{owner_address}/stats", response_model=OwnerStats)
def owner_stats(owner_address: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.get_owner_stats(owner_address)


@router.post("/positions/{position_id}/withdraw")
async def withdraw(
    position_id: str,
    body: WithdrawRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Start withdrawing a lending position back to a Zcash address."""
    return await orchestrator.initiate_withdrawal(
        position_id,
        owner_address=body.owner_address,
        destination_address=body.destination_address,
        amount=body.amount,
    )


@router.post("/positions/{position_id}/process-withdrawal")
async def process_withdrawal(position_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return await orchestrator.process_withdrawal(position_id)


@router.get("/withdrawal/fee", response_model=WithdrawalFee)
def withdrawal_fee(amount: float, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.estimate_withdrawal_fee(amount)


# Operator hooks for bridges that report out of band

@router.post("/positions/{position_id}/deposit-observed", dependencies=[Depends(require_admin)])
async def deposit_observed(
    position_id: str,
    body: DepositObservedRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.mark_deposit_observed(
        position_id, body.source_tx_ref, bridged_amount_hint=body.bridged_amount_hint
    )


@router.post("/positions/{position_id}/completed", dependencies=[Depends(require_admin)])
async def completed(
    position_id: str,
    body: CompletedRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.mark_completed(
        position_id, body.destination_tx_ref, actual_amount=body.actual_amount
    )
