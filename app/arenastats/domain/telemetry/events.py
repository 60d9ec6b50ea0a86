"""
Host events - Validated representations of match-lifecycle notifications.

The host delivers plain dicts tagged with a `kind`. Each kind maps to one
pydantic model; anything that fails validation becomes a DataError so the
aggregator can drop it without mutating state.
"""
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from arenastats.exceptions import DataError


def _to_id(value: Any) -> Any:
    # Account and arena ids arrive as ints from the host but are JSON keys everywhere else
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


EntityId = Annotated[str, BeforeValidator(_to_id), Field(min_length=1)]


class FeedbackType(str, Enum):
    """Closed set of player feedback kinds."""

    DAMAGE = "damage"
    KILL = "kill"
    RADIO_ASSIST = "radioAssist"
    TRACK_ASSIST = "trackAssist"
    TANKING = "tanking"
    RECEIVED_DAMAGE = "receivedDamage"
    TARGET_VISIBILITY = "targetVisibility"
    OTHER = "other"


class HangarStatus(BaseModel):
    kind: Literal["hangar_status"] = "hangar_status"
    in_hangar: bool
    player_id: EntityId | None = None
    player_name: str | None = None


class HangarVehicle(BaseModel):
    kind: Literal["hangar_vehicle"] = "hangar_vehicle"
    localized_short_name: str | None = None


class PlatoonStatus(BaseModel):
    kind: Literal["platoon_status"] = "platoon_status"
    in_platoon: bool


class ArenaEntered(BaseModel):
    kind: Literal["arena_entered"] = "arena_entered"
    arena_id: EntityId
    map_name: str | None = None


class AnyDamage(BaseModel):
    kind: Literal["any_damage"] = "any_damage"
    attacker_player_id: EntityId | None = None


class PlayerFeedback(BaseModel):
    """Feedback about the local player, tagged by `type`."""

    kind: Literal["player_feedback"] = "player_feedback"
    type: FeedbackType
    data: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_is_other(cls, value: Any) -> Any:
        if isinstance(value, FeedbackType):
            return value
        if not isinstance(value, str) or not value:
            raise ValueError("feedback type is required")
        if value not in {t.value for t in FeedbackType}:
            return FeedbackType.OTHER
        return value


class DamageData(BaseModel):
    """Payload of a `damage` feedback."""

    damage: float = Field(ge=0)


class ResultVehicle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: EntityId = Field(alias="accountDBID")
    damage_dealt: float = Field(alias="damageDealt", ge=0)
    kills: int = Field(ge=0)


class ResultPlayer(BaseModel):
    team: int


class ResultAvatar(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: EntityId = Field(alias="accountDBID")


class ResultPersonal(BaseModel):
    avatar: ResultAvatar


class ResultCommon(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration: float = Field(ge=0)
    winner_team: int = Field(alias="winnerTeam")


class BattleResult(BaseModel):
    """Final, authoritative result of one arena."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["battle_result"] = "battle_result"
    arena_id: EntityId = Field(alias="arenaUniqueID")
    personal: ResultPersonal
    common: ResultCommon
    players: dict[str, ResultPlayer]
    vehicles: dict[str, list[ResultVehicle]]

    @field_validator("players", mode="before")
    @classmethod
    def _player_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): v for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _reporter_listed(self) -> "BattleResult":
        if self.player_id not in self.players:
            raise ValueError(f"reporting player {self.player_id} missing from players")
        return self

    @property
    def player_id(self) -> str:
        return self.personal.avatar.account_id

    def find_vehicle(self, player_id: str) -> ResultVehicle | None:
        """First vehicle entry belonging to the given account."""
        for entries in self.vehicles.values():
            for vehicle in entries:
                if vehicle.account_id == player_id:
                    return vehicle
        return None


AnyHostEvent = Union[
    HangarStatus,
    HangarVehicle,
    PlatoonStatus,
    ArenaEntered,
    AnyDamage,
    PlayerFeedback,
    BattleResult,
]

HostEvent = Annotated[AnyHostEvent, Field(discriminator="kind")]

_host_event_adapter = TypeAdapter(HostEvent)


def parse_event(raw: Any) -> AnyHostEvent:
    """
    Validate a raw host notification.

    Raises:
        DataError: If the payload is missing, untagged or malformed
    """
    if not isinstance(raw, dict):
        raise DataError("invalid_event", f"Event must be an object, got {type(raw).__name__}")
    try:
        return _host_event_adapter.validate_python(raw)
    except ValidationError as e:
        raise DataError("invalid_event", f"Invalid {raw.get('kind', 'untagged')} event: {e}") from e
