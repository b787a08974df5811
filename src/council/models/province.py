"""Province models: the voting entities of the council and their weights."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

CouncilType = Literal["Territory", "Lower Council", "Upper Council", "King", "Admin"]

# Weight a province receives when an administrator assigns it a council type
# without naming a weight.
DEFAULT_WEIGHTS: dict[str, float] = {
    "Territory": 0.5,
    "Lower Council": 1.0,
    "Upper Council": 1.5,
    "King": 2.0,
    "Admin": 0.0,
}


class Province(BaseModel):
    """A voting entity. The name is the unique key."""

    name: str
    vote_weight: float = Field(ge=0.0)
    council_type: CouncilType
    credentials: str = Field(default="", exclude=True, repr=False)


class ProvinceSeed(BaseModel):
    """One entry of a province seed file."""

    name: str
    council_type: CouncilType
    vote_weight: float | None = Field(default=None, ge=0.0)

    def to_province(self) -> Province:
        weight = self.vote_weight
        if weight is None:
            weight = DEFAULT_WEIGHTS[self.council_type]
        return Province(name=self.name, vote_weight=weight, council_type=self.council_type)


DEFAULT_PROVINCES: list[ProvinceSeed] = [
    ProvinceSeed(name="Hovalen", council_type="Upper Council"),
    ProvinceSeed(name="Izartil", council_type="Upper Council"),
    ProvinceSeed(name="Rilra", council_type="Lower Council"),
    ProvinceSeed(name="Kobat", council_type="Upper Council"),
    ProvinceSeed(name="Schrafen", council_type="Lower Council"),
    ProvinceSeed(name="Puron", council_type="Lower Council"),
    ProvinceSeed(name="Atitia", council_type="Lower Council"),
    ProvinceSeed(name="Artayos", council_type="Lower Council"),
    ProvinceSeed(name="Capital", council_type="King"),
    ProvinceSeed(name="Guzia", council_type="Territory"),
    ProvinceSeed(name="Astaria", council_type="Territory"),
    ProvinceSeed(name="Administrator", council_type="Admin"),
]
