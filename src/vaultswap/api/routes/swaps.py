"""Swap quote, execution and status endpoints."""

from fastapi import APIRouter, Depends, Query

from vaultswap.api.contracts import ExecuteSwapRequest, GetQuoteRequest
from vaultswap.api.deps import get_orchestrator
from vaultswap.routing.base import QuoteRequest
from vaultswap.services.swap_orchestrator import SwapOrchestrator

router = APIRouter(prefix="/swap", tags=["Swaps"])


@router.post("/quote")
async def get_quote(
    req: GetQuoteRequest, orchestrator: SwapOrchestrator = Depends(get_orchestrator)
) -> dict:
    quote = await orchestrator.get_quote(QuoteRequest(**req.model_dump()))
    return quote.to_dict()


@router.post("/execute")
async def execute_swap(
    req: ExecuteSwapRequest, orchestrator: SwapOrchestrator = Depends(get_orchestrator)
) -> dict:
    result = await orchestrator.execute_swap(req.user_id, req.quote_id)
    return result.to_dict()


@router.get("/status")
async def get_swap_status(
    wallet_address: str = Query(...),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> dict:
    summary = await orchestrator.get_swap_status(wallet_address)
    return summary.to_dict()


@router.get("/status/{reference}")
async def get_swap_status_for(
    reference: str, orchestrator: SwapOrchestrator = Depends(get_orchestrator)
) -> dict:
    summary = await orchestrator.get_swap_status_for(reference)
    return summary.to_dict()


@router.get("/details")
async def get_swap_details(
    swap_id: str = Query(...),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> dict:
    details = await orchestrator.get_swap_details(swap_id)
    return details.to_dict()


@router.get("/distributions")
async def get_distributions(
    quote_id: str = Query(...),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> dict:
    distributions = await orchestrator.get_distributions(quote_id)
    return {"quote_id": quote_id, "distributions": [d.to_dict() for d in distributions]}
