"""Health routes: liveness and a storage round-trip check.

Both are unauthenticated and exempt from the daily quota so that load
balancers and uptime checks never consume a player's allowance.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from aitrumps.api.deps import get_card_storage
from aitrumps.hooks.interfaces import CardStorage, StorageError
from aitrumps.schemas import HealthCheck, utc_now

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "timestamp": utc_now().isoformat()}


@router.get("/health/storage")
async def storage_health(
    storage: CardStorage = Depends(get_card_storage),
) -> JSONResponse:
    """Runs each storage check and reports pass/fail per check.

    Answers 503 when any check fails.
    """
    checks: list[HealthCheck] = []

    try:
        await storage.save_log("health", "Storage health check")
        checks.append(HealthCheck(name="write_log", ok=True))
    except StorageError as exc:
        checks.append(HealthCheck(name="write_log", ok=False, detail=str(exc)))

    try:
        stats = await storage.get_storage_stats()
        checks.append(
            HealthCheck(name="read_stats", ok=True, detail=f"{stats['totalFiles']} files")
        )
    except StorageError as exc:
        checks.append(HealthCheck(name="read_stats", ok=False, detail=str(exc)))

    healthy = all(check.ok for check in checks)
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "success": healthy,
            "backend": storage.backend_name,
            "checks": [check.to_wire() for check in checks],
            "timestamp": utc_now().isoformat(),
        },
    )
