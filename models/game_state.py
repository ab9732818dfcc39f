# models/game_state.py
"""Define the game-state snapshot read by the rule engine.

The snapshot has three required facets (`player`, `world`, `session`) and a few
optional ones (`story`, `recent_events`, `context_tags`) that feed scoring and
context checks. Snapshots are frozen; callers build a new one per call, either
directly or from their own richer context via
[`GameState.from_context()`](models/game_state.py:111).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .engine_constants import SESSION_MODE_ALIASES, EntityKind, SessionPhase


@runtime_checkable
class RandomSource(Protocol):
    """Random capability used by `probability` and `dice_roll`.

    `random.Random` satisfies this protocol; tests pass a seeded instance or a
    scripted fake.
    """

    def random(self) -> float: ...

    def randint(self, a: int, b: int) -> int: ...


class PlayerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    level: int = 1
    location: str = ""
    stats: dict[str, float] = Field(default_factory=dict)
    items: list[str] = Field(default_factory=list)
    status: list[str] = Field(default_factory=list)
    relationships: dict[str, float] = Field(default_factory=dict)


class WorldState(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: float = 0
    weather: str = "clear"
    events: list[str] = Field(default_factory=list)
    flags: dict[str, bool] = Field(default_factory=dict)


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    turn: int = 1
    phase: SessionPhase = SessionPhase.EXPLORATION
    location: str = ""
    npcs_present: list[str] = Field(default_factory=list)

    @field_validator("phase", mode="before")
    @classmethod
    def _map_session_mode(cls, value: Any) -> Any:
        if isinstance(value, str) and value in SESSION_MODE_ALIASES:
            return SESSION_MODE_ALIASES[value]
        return value


class StoryState(BaseModel):
    """Optional story progress facet used for story-relevance scoring."""

    model_config = ConfigDict(frozen=True)

    current_chapter: str | None = None
    progress: float = 0.0
    key_events: list[str] = Field(default_factory=list)


class RecentEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    type: str = ""
    description: str = ""
    timestamp: datetime | None = None


class GameState(BaseModel):
    """Immutable per-call view of player, world and session facts."""

    model_config = ConfigDict(frozen=True)

    player: PlayerState = Field(default_factory=PlayerState)
    world: WorldState = Field(default_factory=WorldState)
    session: SessionState = Field(default_factory=SessionState)
    story: StoryState | None = None
    recent_events: list[RecentEvent] = Field(default_factory=list)
    context_tags: list[str] = Field(default_factory=list)

    def last_event_time(self) -> datetime | None:
        """Return the timestamp of the most recent event that carries one."""
        stamps = [event.timestamp for event in self.recent_events if event.timestamp is not None]
        return max(stamps) if stamps else None

    @classmethod
    def from_context(cls, context: Mapping[str, Any]) -> GameState:
        """Build a snapshot from a caller's session context mapping.

        Accepts both camelCase (`sessionMode`, `currentState`, `npcsPresent`,
        `contextTags`, `recentHistory`) and snake_case keys. Missing parts fall
        back to neutral defaults; unknown session modes become `exploration`.
        """

        def pick(source: Mapping[str, Any] | None, *keys: str, default: Any = None) -> Any:
            if not source:
                return default
            for key in keys:
                if key in source and source[key] is not None:
                    return source[key]
            return default

        current = pick(context, "currentState", "current_state", default={})
        player = pick(current, "player", default={})
        time_info = pick(current, "time", default={})
        weather = pick(current, "weather", default="clear")
        if isinstance(weather, Mapping):
            weather = weather.get("type") or "clear"
        metadata = pick(context, "metadata", default={})
        context_tags = list(pick(context, "contextTags", "context_tags", default=[]))

        mode = pick(context, "sessionMode", "session_mode", default=SessionPhase.EXPLORATION.value)
        if mode in SESSION_MODE_ALIASES:
            phase = SESSION_MODE_ALIASES[mode]
        elif mode in {phase.value for phase in SessionPhase}:
            phase = SessionPhase(mode)
        else:
            phase = SessionPhase.EXPLORATION

        story_raw = pick(current, "story")
        story = None
        if story_raw:
            story = StoryState(
                current_chapter=pick(story_raw, "currentChapter", "current_chapter"),
                progress=pick(story_raw, "progress", default=0.0),
                key_events=list(pick(story_raw, "keyEvents", "key_events", default=[])),
            )

        history = pick(context, "recentHistory", "recent_history", default={})
        recent_events = [
            RecentEvent(
                id=pick(event, "id"),
                type=pick(event, "type", default=""),
                description=pick(event, "description", default=""),
                timestamp=pick(event, "timestamp", "actualStartTime", "actual_start_time"),
            )
            for event in pick(history, "events", default=[])
        ]

        location = pick(player, "location", default="")
        return cls(
            player=PlayerState(
                id=pick(player, "id", default=""),
                name=pick(player, "name", default=""),
                level=pick(player, "level", default=1),
                location=location,
                stats=dict(pick(player, "stats", default={})),
                items=list(pick(player, "items", default=[])),
                status=list(pick(player, "status", default=[])),
                relationships=dict(pick(player, "relationships", default={})),
            ),
            world=WorldState(
                time=pick(time_info, "hour", default=0) if isinstance(time_info, Mapping) else time_info,
                weather=weather,
                events=list(pick(current, "events", default=context_tags)),
                flags=dict(pick(current, "flags", default={})),
            ),
            session=SessionState(
                turn=pick(metadata, "turn", default=1),
                phase=phase,
                location=location,
                npcs_present=list(pick(context, "npcsPresent", "npcs_present", default=[])),
            ),
            story=story,
            recent_events=recent_events,
            context_tags=context_tags,
        )


@dataclass
class EvaluationContext:
    """Everything a single condition evaluation may read.

    `metadata` carries caller-supplied extras such as `behavior_scores` for
    `player_behavior` checks. `rng` overrides the evaluator's random source.
    """

    game_state: GameState
    entity_id: str = ""
    entity_type: EntityKind | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    rng: RandomSource | None = None
