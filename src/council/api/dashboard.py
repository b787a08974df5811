"""Dashboard API: the classified proposal listing for one viewing province."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter

from council.api.deps import RepoDep, SettingsDep
from council.core.dashboard import build_dashboard
from council.core.errors import NotFound
from council.core.tally import weight_table

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("")
async def api_dashboard(
    province: str,
    repo: RepoDep,
    settings: SettingsDep,
    mine: bool = False,
) -> dict:
    """Open, recently closed and older closed proposals as seen by ``province``."""
    provinces = await repo.get_provinces()
    if province not in {p.name for p in provinces}:
        raise NotFound(f"Province {province!r} not found")
    dashboard = build_dashboard(
        await repo.list_proposals(),
        province,
        datetime.now(UTC),
        weight_table(provinces),
        mine_only=mine,
        settings=settings,
    )
    return {"data": dashboard.model_dump(mode="json")}
