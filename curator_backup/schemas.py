"""Entity types and their typed schemas.

Architecture:
- Snapshot layer: entities are plain ordered dicts (field name -> value) so
  unknown fields survive a round trip untouched.
- Live layer: each type has a pydantic schema that import candidates must
  satisfy before they reach the live store. Extra fields are allowed and kept.
- Identity: every type names a natural key (one field, or several for rows
  without a single stable id). The internal numeric "id" belongs to the live
  store and is never used to compare entities.
- Relations: activities, task reports and response tracking point at their
  curator and server through internal ids. Those ids are only meaningful
  inside the store (or snapshot) they came from, so they are translated
  through the parent's natural key whenever rows move between the two.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

INTERNAL_ID_FIELD = "id"


class EntitySchema(BaseModel):
    model_config = ConfigDict(extra="allow", strict=True)


class CuratorSchema(EntitySchema):
    discordId: str = Field(..., min_length=1)
    name: str
    factions: List[str] = Field(default_factory=list)
    curatorType: Optional[str] = None
    subdivision: Optional[str] = None
    isActive: Optional[bool] = None

    @field_validator("discordId")
    @classmethod
    def key_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("discordId must not be blank")
        return v


class DiscordServerSchema(EntitySchema):
    serverId: str = Field(..., min_length=1)
    name: str
    roleTagId: Optional[str] = None
    completedTasksChannelId: Optional[str] = None
    isActive: Optional[bool] = None

    @field_validator("serverId")
    @classmethod
    def key_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("serverId must not be blank")
        return v


class BotSettingSchema(EntitySchema):
    key: str = Field(..., min_length=1)
    value: str

    @field_validator("key")
    @classmethod
    def key_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("key must not be blank")
        return v


class NotificationSettingSchema(EntitySchema):
    notificationServerId: str = Field(..., min_length=1)
    notificationChannelId: str = Field(..., min_length=1)
    isActive: Optional[bool] = None


class RatingSettingSchema(EntitySchema):
    ratingName: str = Field(..., min_length=1)
    ratingText: str
    minScore: int
    color: str


class ActivitySchema(EntitySchema):
    curatorId: int
    serverId: int
    type: str = Field(..., min_length=1)  # message, reaction, reply, task_verification
    channelId: str
    channelName: Optional[str] = None
    messageId: Optional[str] = None
    content: Optional[str] = None
    reactionEmoji: Optional[str] = None
    targetMessageId: Optional[str] = None
    targetMessageContent: Optional[str] = None
    timestamp: str = Field(..., min_length=1)


class TaskReportSchema(EntitySchema):
    serverId: int
    authorId: str
    authorName: str
    messageId: str = Field(..., min_length=1)
    channelId: str
    content: Optional[str] = None
    taskCount: int
    submittedAt: str
    weekStart: str
    status: Optional[str] = None
    curatorId: Optional[int] = None
    curatorDiscordId: Optional[str] = None
    curatorName: Optional[str] = None
    checkedAt: Optional[str] = None
    approvedTasks: Optional[int] = None


class ResponseTrackingSchema(EntitySchema):
    serverId: int
    curatorId: Optional[int] = None
    mentionMessageId: str = Field(..., min_length=1)
    mentionTimestamp: str
    responseMessageId: Optional[str] = None
    responseTimestamp: Optional[str] = None
    responseType: Optional[str] = None
    responseTimeSeconds: Optional[int] = None


def _is_key_part(value: Any) -> bool:
    return value is None or (isinstance(value, (str, int)) and not isinstance(value, bool))


@dataclass(frozen=True)
class EntityType:
    """An entity collection that takes part in snapshots.

    natural_key is either one field name or a tuple of field names. A
    composite key is rendered as a compact JSON list of the field values, so
    it is still a plain string wherever keys are compared or locked.

    references lists (field, parent type) pairs: the field holds the internal
    id of a row of the parent type.
    """
    name: str
    natural_key: Union[str, Tuple[str, ...]]
    schema: Type[EntitySchema]
    archive_reason: Optional[str] = None  # None: never archived on delete
    required: bool = True  # must be present in every snapshot
    references: Tuple[Tuple[str, str], ...] = ()

    @property
    def archivable(self) -> bool:
        return self.archive_reason is not None

    @property
    def key_fields(self) -> Tuple[str, ...]:
        if isinstance(self.natural_key, str):
            return (self.natural_key,)
        return tuple(self.natural_key)

    @property
    def key_label(self) -> str:
        return "+".join(self.key_fields)

    def key_of(self, entity: Dict[str, Any]) -> Optional[str]:
        """Natural key of a raw entity, or None if it has no usable key."""
        if not isinstance(entity, dict):
            return None
        if isinstance(self.natural_key, str):
            value = entity.get(self.natural_key)
            if isinstance(value, str) and value.strip():
                return value
            return None

        values = [entity.get(f) for f in self.natural_key]
        if not all(_is_key_part(v) for v in values) or all(v is None for v in values):
            return None
        return json.dumps(values, ensure_ascii=False, separators=(",", ":"))

    def validate(self, entity: Any) -> Dict[str, Any]:
        """Check entity against the schema and return it unchanged.

        Raises ValueError with a readable reason on failure. The returned dict
        is the caller's input (field order and unknown fields preserved); the
        schema is only a gate.
        """
        if not isinstance(entity, dict):
            raise ValueError(f"expected an object, got {type(entity).__name__}")
        try:
            self.schema.model_validate(entity)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValueError(problems) from e
        return entity


CURATORS = EntityType(
    name="curators",
    natural_key="discordId",
    schema=CuratorSchema,
    archive_reason="deleted-curator",
)
SERVERS = EntityType(
    name="servers",
    natural_key="serverId",
    schema=DiscordServerSchema,
    archive_reason="deleted-server",
)
BOT_SETTINGS = EntityType(
    name="botSettings",
    natural_key="key",
    schema=BotSettingSchema,
    required=False,
)
NOTIFICATION_SETTINGS = EntityType(
    name="notificationSettings",
    natural_key="notificationServerId",
    schema=NotificationSettingSchema,
    required=False,
)
RATING_SETTINGS = EntityType(
    name="ratingSettings",
    natural_key="ratingName",
    schema=RatingSettingSchema,
    required=False,
)
# Reactions carry no messageId of their own, so activities are identified by
# what happened where and when
ACTIVITIES = EntityType(
    name="activities",
    natural_key=("type", "channelId", "messageId", "targetMessageId", "reactionEmoji", "timestamp"),
    schema=ActivitySchema,
    required=False,
    references=(("curatorId", "curators"), ("serverId", "servers")),
)
TASK_REPORTS = EntityType(
    name="taskReports",
    natural_key="messageId",
    schema=TaskReportSchema,
    required=False,
    references=(("curatorId", "curators"), ("serverId", "servers")),
)
RESPONSE_TRACKING = EntityType(
    name="responseTracking",
    natural_key="mentionMessageId",
    schema=ResponseTrackingSchema,
    required=False,
    references=(("curatorId", "curators"), ("serverId", "servers")),
)

# Registry order is the serialization and import order: parents before the
# rows that reference them
ENTITY_TYPES: Dict[str, EntityType] = {
    t.name: t
    for t in (
        CURATORS,
        SERVERS,
        BOT_SETTINGS,
        NOTIFICATION_SETTINGS,
        RATING_SETTINGS,
        ACTIVITIES,
        TASK_REPORTS,
        RESPONSE_TRACKING,
    )
}


def get_entity_type(name: str) -> EntityType:
    try:
        return ENTITY_TYPES[name]
    except KeyError:
        raise ValueError(f"Unknown entity type: {name}. Available: {list(ENTITY_TYPES)}") from None


def referencing_types(parent: str, entity_types: Optional[Dict[str, EntityType]] = None) -> List[Tuple[EntityType, str]]:
    """(child type, reference field) pairs whose field points at rows of parent."""
    types = entity_types if entity_types is not None else ENTITY_TYPES
    return [
        (etype, field)
        for etype in types.values()
        for field, target in etype.references
        if target == parent
    ]


def parent_type_names(entity_types: Optional[Dict[str, EntityType]] = None) -> List[str]:
    """Types referenced by at least one other type, in registry order."""
    types = entity_types if entity_types is not None else ENTITY_TYPES
    targets = {target for etype in types.values() for _, target in etype.references}
    return [name for name in types if name in targets]
