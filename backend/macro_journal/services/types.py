"""
Typed definitions shared by the insight services.

Entries come from the journal (read-only here); notifications mirror the `notifications`
table row shape the UI consumes; ThirtyDayStats is a pure projection, never persisted.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, TypedDict

from macro_journal.core.constants import (
    DEFAULT_CALORIE_GOAL,
    DEFAULT_CARB_PERCENT,
    DEFAULT_FAT_PERCENT,
    DEFAULT_PROTEIN_PERCENT,
    KCAL_PER_GRAM_CARBS,
    KCAL_PER_GRAM_FAT,
    KCAL_PER_GRAM_PROTEIN,
)

MACRO_NAMES = ("protein", "fat", "carbs")


class SessionEvent(str, Enum):
    """Auth lifecycle events the session tracker reacts to."""
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SESSION_PRESENT = "SESSION_PRESENT"


class AppNotification(TypedDict):
    """One ledger notification (same keys as the notifications table)."""
    id: str
    title: str
    body: str
    timestamp: int  # epoch millis
    read: bool
    user_id: str


class Alert(TypedDict):
    """In-app error/info entry. Shown to the user, never persisted."""
    title: str
    body: str
    type: Literal["error", "info", "success"]


def _to_grams(value: Any) -> float:
    """Macro value as float; numeric strings accepted, anything else counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class JournalEntry:
    """A logged food with its macros. date is YYYY-MM-DD, time is e.g. '8:05 PM'."""
    date: str
    time: str
    food: str
    macros: dict[str, Any] = field(default_factory=dict)

    def grams(self, macro: str) -> float:
        return _to_grams((self.macros or {}).get(macro))

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "time": self.time, "food": self.food, "macros": dict(self.macros or {})}


@dataclass(frozen=True)
class MacroTotals:
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0


@dataclass(frozen=True)
class MacroGoals:
    """Calorie goal plus percentage split. Gram targets use 4/9/4 kcal per gram."""
    calorie_goal: float = DEFAULT_CALORIE_GOAL
    protein_percent: float = DEFAULT_PROTEIN_PERCENT
    fat_percent: float = DEFAULT_FAT_PERCENT
    carb_percent: float = DEFAULT_CARB_PERCENT

    @property
    def protein_grams(self) -> float:
        return self.calorie_goal * self.protein_percent / 100 / KCAL_PER_GRAM_PROTEIN

    @property
    def fat_grams(self) -> float:
        return self.calorie_goal * self.fat_percent / 100 / KCAL_PER_GRAM_FAT

    @property
    def carb_grams(self) -> float:
        return self.calorie_goal * self.carb_percent / 100 / KCAL_PER_GRAM_CARBS

    @classmethod
    def from_setting(cls, value: Any) -> "MacroGoals":
        """Build from the macroGoals setting payload; missing or invalid fields keep defaults."""
        if not isinstance(value, dict):
            return cls()
        defaults = cls()

        def pick(key: str, fallback: float) -> float:
            v = value.get(key)
            if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
                return fallback
            return float(v)

        return cls(
            calorie_goal=pick("calorieGoal", defaults.calorie_goal),
            protein_percent=pick("proteinPercent", defaults.protein_percent),
            fat_percent=pick("fatPercent", defaults.fat_percent),
            carb_percent=pick("carbPercent", defaults.carb_percent),
        )

    def to_setting(self) -> dict[str, float]:
        return {
            "calorieGoal": self.calorie_goal,
            "proteinPercent": self.protein_percent,
            "fatPercent": self.fat_percent,
            "carbPercent": self.carb_percent,
        }


@dataclass(frozen=True)
class ThirtyDayStats:
    most_frequent_foods: list[str]
    least_frequent_foods: list[str]
    avg_gap_in_minutes: float
    typical_meal_time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "mostFrequentFoods": list(self.most_frequent_foods),
            "leastFrequentFoods": list(self.least_frequent_foods),
            "avgGapInMinutes": self.avg_gap_in_minutes,
            "typicalMealTime": self.typical_meal_time,
        }
