"""
Challenge prize table.

A prize is either a single-rank prize or a rank-range ("bulk") prize.
The two shapes are a tagged union on `kind`; the legacy wire format with an
`isBulk` flag is accepted and mapped onto the union before validation.
"""

from typing import Annotated, Any, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from src.core.exceptions import ValidationFailed


class SingleRankPrize(BaseModel):
    """Prize for exactly one rank"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["single"] = "single"
    rank: int = Field(ge=1)
    amount: float = Field(ge=0)
    prize: str = ""


class RangePrize(BaseModel):
    """Prize shared by every rank in [rank_start, rank_end]"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["range"] = "range"
    rank_start: int = Field(ge=1)
    rank_end: int = Field(ge=1)
    amount: float = Field(ge=0)
    prize: str = ""

    @model_validator(mode="after")
    def check_range(self) -> "RangePrize":
        if self.rank_start > self.rank_end:
            raise ValueError("rankStart cannot be greater than rankEnd")
        return self


Prize = Annotated[Union[SingleRankPrize, RangePrize], Field(discriminator="kind")]

_prize_list = TypeAdapter(List[Prize])

_LEGACY_KEYS = {"rankStart": "rank_start", "rankEnd": "rank_end"}


def _normalize(raw: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase / isBulk payloads onto the tagged shape"""
    data = {_LEGACY_KEYS.get(key, key): value for key, value in raw.items()}
    is_bulk = data.pop("isBulk", None)

    if "kind" not in data:
        data["kind"] = "range" if is_bulk else "single"

    # Mongo-era documents carry null placeholders for the other shape
    for key in ("rank", "rank_start", "rank_end"):
        if key in data and data[key] is None:
            del data[key]
    data.pop("_id", None)
    return data


def parse_prizes(raw: list | None) -> List[SingleRankPrize | RangePrize]:
    """
    Validate a prize table

    Raises:
        ValidationFailed: a prize mixes shapes or has an inverted range
    """
    if not raw:
        return []
    try:
        return _prize_list.validate_python([_normalize(dict(item)) for item in raw])
    except (ValidationError, TypeError) as e:
        raise ValidationFailed(f"Invalid prize table: {e}", fields=["prizes"])


def dump_prizes(prizes: List[SingleRankPrize | RangePrize]) -> list[dict]:
    return [prize.model_dump() for prize in prizes]


def prize_for_rank(prizes: List[SingleRankPrize | RangePrize], rank: int) -> float:
    """Amount awarded to a final rank (0 when the rank wins nothing)"""
    for prize in prizes:
        if isinstance(prize, SingleRankPrize) and prize.rank == rank:
            return prize.amount
        if isinstance(prize, RangePrize) and prize.rank_start <= rank <= prize.rank_end:
            return prize.amount
    return 0.0
