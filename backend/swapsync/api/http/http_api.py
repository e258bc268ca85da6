from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request

from swapsync.core.conversion.conversion_engine import (
    build_snapshot,
    slippage_warning,
    validate_slippage_tolerance,
    validate_usd_amount,
)
from swapsync.core.structures.structures import ConversionRequest, ConversionResponse
from swapsync.core.utils.date_utils import timezone_now
from swapsync.logging.logger import get_logger

router = APIRouter()
log = get_logger(__name__)


@router.get("/api/health", tags=["health"])  # type: ignore[misc]
async def get_health(request: Request) -> Dict[str, Any]:
    """
    Report service health and basic component status.

    Returns:
        A structured payload including provider availability and a timestamp in the system local timezone.
    """
    state = request.app.state
    provider_ok = state.provider is not None
    status = "ok" if provider_ok else "degraded"
    return {
        "status": status,
        "timestamp": timezone_now().isoformat(),
        "components": {
            "provider": {"ok": provider_ok},
            "tokenCache": {"entries": len(state.token_cache)},
            "priceCache": {"entries": len(state.price_cache)},
        },
    }


@router.get("/api/tokens", tags=["tokens"])  # type: ignore[misc]
def list_tokens(request: Request) -> List[Dict[str, str]]:
    """Supported tokens and the chain each one is resolved on."""
    return [
        {"symbol": token.symbol, "chainId": token.chain_id, "chainName": token.chain_name}
        for token in request.app.state.catalog.tokens()
    ]


@router.post("/api/convert", tags=["conversion"], response_model=ConversionResponse)  # type: ignore[misc]
def convert(body: ConversionRequest) -> ConversionResponse:
    """
    Stateless conversion for the given amount and USD prices.

    An empty amount or a non-positive price yields the zero conversion.
    """
    validation = validate_usd_amount(body.amount)
    if not validation.valid:
        raise HTTPException(status_code=422, detail=validation.reason)

    warnings: List[str] = []
    slippage = body.slippageTolerancePct
    if slippage is not None:
        try:
            slippage = validate_slippage_tolerance(slippage)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        warning = slippage_warning(slippage)
        if warning:
            warnings.append(warning)

    snapshot = build_snapshot(
        validation.amount or 0.0,
        body.sourcePriceUsd,
        body.targetPriceUsd,
        slippage_tolerance_pct=slippage,
    )
    log.debug("[HTTP][CONVERT] amount=%s usd=%s target=%s", body.amount, snapshot.usd_value_text, snapshot.target_amount_text)
    return ConversionResponse(
        sourceAmount=snapshot.source_amount,
        targetAmount=snapshot.target_amount,
        usdValue=snapshot.usd_value,
        sourceAmountText=snapshot.source_amount_text,
        targetAmountText=snapshot.target_amount_text,
        usdValueText=snapshot.usd_value_text,
        priceImpactPct=snapshot.price_impact_pct,
        priceImpactSeverity=snapshot.price_impact_severity.value if snapshot.price_impact_severity else None,
        minimumReceived=snapshot.minimum_received,
        errors=warnings,
    )
