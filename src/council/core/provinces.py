"""Province table: first-run seeding and administrative type/weight changes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import BaseModel, Field

from council.config import PROJECT_ROOT
from council.core.errors import NotFound, PermissionDenied, ValidationError
from council.models.province import (
    DEFAULT_PROVINCES,
    DEFAULT_WEIGHTS,
    Province,
    ProvinceSeed,
)

if TYPE_CHECKING:
    from council.db.repository import Repository

logger = logging.getLogger(__name__)


class ProvinceFile(BaseModel):
    """Shape of a province seed YAML file."""

    provinces: list[ProvinceSeed] = Field(default_factory=list)


def load_provinces_file(path: str | Path) -> list[Province]:
    """Load a council from YAML. Relative paths resolve against the project root.

    Example::

        provinces:
          - name: Capital
            council_type: King
          - name: Guzia
            council_type: Territory
            vote_weight: 0.75
    """
    file_path = Path(path)
    if not file_path.is_absolute():
        file_path = PROJECT_ROOT / file_path
    with open(file_path) as f:
        raw = yaml.safe_load(f) or {}
    parsed = ProvinceFile(**raw)
    names = [seed.name for seed in parsed.provinces]
    if len(names) != len(set(names)):
        raise ValidationError(f"Duplicate province names in {file_path}")
    return [seed.to_province() for seed in parsed.provinces]


def default_provinces() -> list[Province]:
    return [seed.to_province() for seed in DEFAULT_PROVINCES]


async def seed_provinces(repo: Repository, provinces: list[Province] | None = None) -> int:
    """Seed the province table on first run. Does nothing if any province exists.

    Returns the number of provinces added.
    """
    if await repo.count_provinces() > 0:
        return 0
    provinces = provinces if provinces is not None else default_provinces()
    for province in provinces:
        await repo.add_province(province)
    logger.info("provinces_seeded count=%d", len(provinces))
    return len(provinces)


async def update_province(
    repo: Repository,
    acting_province: str,
    name: str,
    council_type: str,
    vote_weight: float | None = None,
) -> Province:
    """Change a province's council type and weight. Admin provinces only.

    Without an explicit weight the council type's default weight applies.
    """
    actor = await repo.get_province(acting_province)
    if actor is None or actor.council_type != "Admin":
        raise PermissionDenied("Only an administrator may modify provinces")
    if council_type not in DEFAULT_WEIGHTS:
        raise ValidationError(f"Unknown council type {council_type!r}")
    weight = DEFAULT_WEIGHTS[council_type] if vote_weight is None else vote_weight
    if weight < 0:
        raise ValidationError("Vote weight cannot be negative")
    if await repo.get_province(name) is None:
        raise NotFound(f"Province {name!r} not found")
    updated = await repo.update_province(name, council_type, weight)
    logger.info(
        "province_updated name=%s type=%s weight=%s by=%s",
        name,
        council_type,
        weight,
        acting_province,
    )
    return updated
