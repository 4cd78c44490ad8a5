"""
Core data models for the LevelED Up screen time bot.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Question:
    """A single multiplication problem."""
    operand_a: int
    operand_b: int
    expected_answer: int

    @property
    def prompt(self) -> str:
        return f"{self.operand_a} × {self.operand_b} ="


@dataclass
class RewardSettings:
    """Parent-controlled quiz and reward parameters."""
    passing_percentage: int = 80
    questions_per_session: int = 10
    reward_minutes: int = 10
    daily_max_minutes: int = 60
    daily_cap_enabled: bool = True


@dataclass
class QuizSession:
    """One attempt at a fixed-length batch of questions."""
    settings: RewardSettings
    questions: List[Question]
    current_index: int = 0
    correct_count: int = 0
    input_buffer: str = ""
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def current_question(self) -> Optional[Question]:
        if self.current_index >= len(self.questions):
            return None
        return self.questions[self.current_index]


class AppMode(Enum):
    """Screens the app can show."""
    HOME = "home"
    PARENT_SETTINGS = "parent_settings"
    QUIZ = "quiz"
    UNLOCKED = "unlocked"


class SubmissionOutcome(Enum):
    """What happened when an answer was submitted."""
    IGNORED = "ignored"
    ADVANCED = "advanced"
    PASSED = "passed"
    PASSED_AT_CAP = "passed_at_cap"
    FAILED = "failed"


@dataclass(frozen=True)
class HomeState:
    mode = AppMode.HOME


@dataclass(frozen=True)
class ParentSettingsState:
    mode = AppMode.PARENT_SETTINGS


@dataclass
class QuizState:
    session: QuizSession
    feedback: Optional[str] = None
    mode = AppMode.QUIZ


@dataclass(frozen=True)
class UnlockedState:
    seconds_granted: int
    minutes_earned: int
    mode = AppMode.UNLOCKED


AppState = Union[HomeState, ParentSettingsState, QuizState, UnlockedState]
