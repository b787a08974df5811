"""Province API: the weight table and administrative type/weight changes."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from council.api.deps import BusDep, RepoDep
from council.core.provinces import update_province
from council.core.tally import total_weight, weight_table

router = APIRouter(prefix="/api/provinces", tags=["provinces"])


class UpdateProvinceRequest(BaseModel):
    province: str  # acting administrator
    council_type: str
    vote_weight: float | None = None


@router.get("")
async def api_list_provinces(repo: RepoDep) -> dict:
    """All provinces with their weights, plus the electorate total."""
    provinces = await repo.get_provinces()
    return {
        "data": {
            "provinces": [p.model_dump() for p in provinces],
            "total_weight": total_weight(weight_table(provinces)),
        }
    }


@router.patch("/{name}")
async def api_update_province(
    name: str, body: UpdateProvinceRequest, repo: RepoDep, bus: BusDep
) -> dict:
    """Change a province's council type and vote weight (administrators only)."""
    province = await update_province(
        repo,
        body.province,
        name,
        council_type=body.council_type,
        vote_weight=body.vote_weight,
    )
    await repo.commit()
    await bus.publish("province.updated", province.model_dump())
    return {"data": province.model_dump()}
