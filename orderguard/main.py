# fastapi application - order fraud screening api
# provides /orders/screen plus suspended asset management

import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from db.models import AssetType, db
from orderguard.config import FraudConfig, settings
from orderguard.errors import FraudRejected
from orderguard.gate import FraudGate, RequestContext
from orderguard.stats import SqlStatisticsProvider
from orderguard.schemas import (
    CheckResult,
    RejectionResponse,
    ScreenOrderRequest,
    ScreenOrderResponse,
    SuspensionResponse,
)
from orderguard.subjects import UserSubject, normalize_fingerprint
from orderguard.suspension import SqlSuspendedAssetStore, SuspendedAssetStore

logger = logging.getLogger(__name__)

# create fastapi app
app = FastAPI(
    title="Order Fraud Guard API",
    description="Heuristic fraud screening for orders based on historical order stats",
    version="1.0.0"
)

_asset_store = None
_gate = None


def get_asset_store() -> SuspendedAssetStore:
    """shared suspended asset store (postgres)"""
    global _asset_store
    if _asset_store is None:
        _asset_store = SqlSuspendedAssetStore(db)
    return _asset_store


def get_gate() -> FraudGate:
    """shared fraud gate, limits are parsed once on first use"""
    global _gate
    if _gate is None:
        _gate = FraudGate(
            stats_provider=SqlStatisticsProvider(db),
            asset_store=get_asset_store(),
            config=FraudConfig.from_settings(settings),
        )
    return _gate


def client_ip(request: Request):
    if settings.trust_forwarded_for:
        forwarded = request.headers.get('x-forwarded-for')
        if forwarded:
            return forwarded.split(',')[0].strip()
    return request.client.host if request.client else None


@app.exception_handler(FraudRejected)
async def fraud_rejected_handler(request: Request, exc: FraudRejected):
    return JSONResponse(status_code=403, content=exc.to_dict())


@app.on_event("startup")
async def startup():
    """configure logging and load fraud limits"""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    gate = get_gate()
    logger.info(
        "fraud guard started (enforcement: %s)",
        'on' if gate.enforced else 'log only',
    )


@app.on_event("shutdown")
async def shutdown():
    """cleanup on app shutdown"""
    logger.info("shutting down...")
    await db.close()


@app.get("/", tags=["root"])
async def root():
    """api root - basic info"""
    return {
        "service": "Order Fraud Guard",
        "version": "1.0.0",
        "endpoints": {
            "screen": "/orders/screen - screen an order",
            "suspended_assets": "/suspended-assets/{asset_type}/{fingerprint}",
            "health": "/health - health check",
            "docs": "/docs - api documentation"
        }
    }


@app.get("/health", tags=["monitoring"])
async def health_check():
    """health check endpoint - verifies the database is reachable"""
    try:
        db_connected = await db.ping()
    except Exception as e:
        db_connected = False
        logger.warning("database health check failed: %s", e)

    return {
        "status": "healthy" if db_connected else "degraded",
        "database_connected": db_connected,
    }


@app.post(
    "/orders/screen",
    response_model=ScreenOrderResponse,
    responses={403: {"model": RejectionResponse}},
    tags=["fraud detection"],
)
async def screen_order(body: ScreenOrderRequest, request: Request, gate: FraudGate = Depends(get_gate)):
    """
    screen an order before it is processed

    - checks the client ip, the card, and the user (or guest email)
    - failing subjects are recorded as suspended assets
    - returns 403 when enforcement is on and a check fails

    example:
        curl -X POST http://localhost:8000/orders/screen \\
             -H "Content-Type: application/json" \\
             -d '{"remote_user_id": 42, "order": {}}'
    """
    remote_user = UserSubject(body.remote_user_id) if body.remote_user_id is not None else None
    context = RequestContext(remote_user=remote_user, ip=client_ip(request))

    result = await gate.screen_order(context, body.order)

    return ScreenOrderResponse(
        allowed=True,
        checks={
            name: CheckResult(
                passed=evaluation.passed,
                message=evaluation.message,
                breached_limit=None if evaluation.passed else evaluation.rule.as_params(),
            )
            for name, evaluation in result.checks.items()
        },
        flagged=result.flagged,
    )


@app.get("/suspended-assets/{asset_type}/{fingerprint}", response_model=SuspensionResponse, tags=["suspended assets"])
async def get_suspended_asset(
    asset_type: AssetType,
    fingerprint: str,
    store: SuspendedAssetStore = Depends(get_asset_store),
):
    """look up a suspension record"""
    record = await store.get(asset_type, normalize_fingerprint(asset_type, fingerprint))
    if record is None:
        raise HTTPException(status_code=404, detail="asset is not suspended")
    return SuspensionResponse(
        asset_type=record.asset_type.value,
        fingerprint=record.fingerprint,
        reason=record.reason,
        created_at=record.created_at,
    )


@app.delete("/suspended-assets/{asset_type}/{fingerprint}", tags=["suspended assets"])
async def clear_suspended_asset(
    asset_type: AssetType,
    fingerprint: str,
    store: SuspendedAssetStore = Depends(get_asset_store),
):
    """lift a suspension"""
    fingerprint = normalize_fingerprint(asset_type, fingerprint)
    deleted = await store.delete(asset_type, fingerprint)
    if not deleted:
        raise HTTPException(status_code=404, detail="asset is not suspended")
    logger.info("cleared suspension for %s %s", asset_type.value, fingerprint)
    return {"deleted": True, "asset_type": asset_type.value, "fingerprint": fingerprint}


if __name__ == "__main__":
    # run with: python -m orderguard.main
    uvicorn.run(
        "orderguard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True  # auto-reload on code changes
    )
