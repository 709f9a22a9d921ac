"""
Classroom World - Pydantic Models (v2 syntax)
"""

from datetime import datetime, date
from enum import Enum
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, ConfigDict, Field


# ============================================
# ENUMS
# ============================================

class DailyEventStatus(str, Enum):
    CLAIMABLE = "claimable"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class WeeklyTier(str, Enum):
    BASELINE = "baseline"
    NICER = "nicer"
    SPECIAL = "special"


# ============================================
# STORED RECORDS
# ============================================

class WorldState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    classroom_id: str
    xp: int = 0
    selected_image: int = 0
    overlay_enabled: bool = True
    streak_days: int = 0
    last_login_day: Optional[date] = None
    next_daily_spawn_at: Optional[datetime] = None
    next_weekly_eval_at: Optional[datetime] = None
    weekly_track_level: int = 0
    weekly_track_points: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class XpEvent(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    state_id: int
    source: str
    amount: int
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class DailyEvent(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    state_id: int
    event_day: date
    event_key: str
    status: DailyEventStatus
    claimable_until: datetime
    claimed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class WeeklyResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    state_id: int
    week_start: date
    week_end: date
    attendance_score: Optional[int] = None
    assignment_score: Optional[int] = None
    care_score: Optional[int] = None
    earned_points: float = 0
    available_points: float = 0
    weekly_pct: Optional[float] = None
    tier: WeeklyTier
    event_key: Optional[str] = None
    bonus_xp: int = 0
    track_points_awarded: int = 0
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


# ============================================
# ENGINE RESULTS
# ============================================

class GrantResult(BaseModel):
    granted: bool
    xp_awarded: int = 0
    new_level: int
    new_unlocks: List[int] = Field(default_factory=list)
    source: Optional[str] = None


class AchievementItem(BaseModel):
    achievement_id: str
    reward_key: str
    metadata: Optional[Dict[str, Any]] = None


class AchievementGrant(BaseModel):
    achievement_id: str
    label: str
    xp: int


class AchievementsResult(BaseModel):
    achievements: List[AchievementGrant] = Field(default_factory=list)
    total_xp_awarded: int = 0
    new_level: int = 0
    new_unlocks: List[int] = Field(default_factory=list)


class ClaimResult(BaseModel):
    event: Optional[DailyEvent] = None
    xp_awarded: int = 0
    new_level: int
    new_unlocks: List[int] = Field(default_factory=list)


class WorldView(WorldState):
    """World state enriched with derived leveling fields."""
    level: int
    level_progress: int
    level_progress_percent: int
    next_unlock_level: Optional[int] = None
    unlocks: List[int] = Field(default_factory=list)


class WorldSnapshot(BaseModel):
    world: WorldView
    daily_event: Optional[DailyEvent] = None
    latest_weekly_result: Optional[WeeklyResult] = None


class TickResult(BaseModel):
    daily_spawned: int = 0
    expired: int = 0
    weekly_evaluated: int = 0


# ============================================
# COLLABORATOR RECORDS
# ============================================

class DueAssignment(BaseModel):
    id: str
    due_at: datetime


class Submission(BaseModel):
    assignment_id: str
    is_submitted: bool
    submitted_at: Optional[datetime] = None


# ============================================
# API REQUESTS
# ============================================

class WorldActionRequest(BaseModel):
    action: str
    enabled: Optional[bool] = None


class GrantXpRequest(BaseModel):
    source: str
    metadata: Optional[Dict[str, Any]] = None


class GrantAchievementsRequest(BaseModel):
    items: List[AchievementItem]


class SelectImageRequest(BaseModel):
    image_index: int


class HealthStatus(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "connected"
