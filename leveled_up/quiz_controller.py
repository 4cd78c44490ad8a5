"""
Screen time controller for the LevelED Up bot.
Drives the home / parent settings / quiz / unlocked mode machine, scores quiz
sessions and pays out play time through the reward ledger.
"""
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, List, Callable, Awaitable, Any, FrozenSet, Tuple

from .models import (
    AppMode, AppState, HomeState, ParentSettingsState, QuizState, UnlockedState,
    QuizSession, SubmissionOutcome
)
from .quiz_engine import QuizEngine, format_countdown, progress_percent
from .reward_ledger import RewardLedger
from .config_manager import ConfigManager


class Action(Enum):
    """User actions, one per button on the screen."""
    OPEN_SETTINGS = "open_settings"
    UPDATE_SETTING = "update_setting"
    BACK = "back"
    START_CHALLENGE = "start_challenge"
    SUBMIT_ANSWER = "submit_answer"
    EXIT_QUIZ = "exit_quiz"
    END_SESSION = "end_session"
    EARN_MORE = "earn_more"


# (current mode, action) -> modes the action may lead to
TRANSITIONS: Dict[Tuple[AppMode, Action], FrozenSet[AppMode]] = {
    (AppMode.HOME, Action.OPEN_SETTINGS): frozenset({AppMode.PARENT_SETTINGS}),
    (AppMode.HOME, Action.START_CHALLENGE): frozenset({AppMode.QUIZ}),
    (AppMode.PARENT_SETTINGS, Action.UPDATE_SETTING): frozenset({AppMode.PARENT_SETTINGS}),
    (AppMode.PARENT_SETTINGS, Action.BACK): frozenset({AppMode.HOME}),
    (AppMode.PARENT_SETTINGS, Action.START_CHALLENGE): frozenset({AppMode.QUIZ}),
    (AppMode.QUIZ, Action.SUBMIT_ANSWER): frozenset({AppMode.QUIZ, AppMode.UNLOCKED, AppMode.HOME}),
    (AppMode.QUIZ, Action.EXIT_QUIZ): frozenset({AppMode.HOME}),
    (AppMode.UNLOCKED, Action.END_SESSION): frozenset({AppMode.HOME}),
    (AppMode.UNLOCKED, Action.EARN_MORE): frozenset({AppMode.QUIZ}),
}


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class InvalidTransitionError(QuizControllerError):
    """Raised when an action is not available in the current mode."""

    def __init__(self, mode: AppMode, action: Action):
        self.mode = mode
        self.action = action
        super().__init__(f"Action '{action.value}' is not available in mode '{mode.value}'")


class DailyCapReachedError(QuizControllerError):
    """Raised when more play time is requested after the daily cap is used up."""
    pass


class QuizController:
    """
    Orchestrates the screen time app for one family.

    Settings and the reward ledger are passed in rather than looked up
    globally. The current screen is a tagged state object; a quiz session only
    exists while in QuizState and the countdown only runs while in UnlockedState.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        reward_ledger: Optional[RewardLedger] = None,
        quiz_engine: Optional[QuizEngine] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the controller on the home screen.

        Args:
            config_manager: Settings store
            reward_ledger: Ledger for today's minutes, created from settings if None
            quiz_engine: Question generator and countdown owner
            clock: Current local time, used for a new ledger
        """
        self.logger = logging.getLogger(__name__)
        self.config_manager = config_manager
        self.quiz_engine = quiz_engine or QuizEngine()
        self.reward_ledger = reward_ledger or RewardLedger(
            config_manager.get_daily_max_minutes(), clock
        )
        self.reward_ledger.reset_if_new_day()

        self._state: AppState = HomeState()
        self._on_countdown_tick: Optional[Callable[[int], Awaitable[Any]]] = None
        self._on_countdown_expired: Optional[Callable[[], Awaitable[Any]]] = None

        self.logger.info("QuizController initialized")

    # State access

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def mode(self) -> AppMode:
        return self._state.mode

    @property
    def session(self) -> Optional[QuizSession]:
        if isinstance(self._state, QuizState):
            return self._state.session
        return None

    @property
    def feedback(self) -> Optional[str]:
        if isinstance(self._state, QuizState):
            return self._state.feedback
        return None

    @property
    def seconds_remaining(self) -> int:
        countdown = self.quiz_engine.countdown
        if not isinstance(self._state, UnlockedState) or countdown is None:
            return 0
        return countdown.remaining_time

    def set_countdown_listeners(
        self,
        on_tick: Optional[Callable[[int], Awaitable[Any]]] = None,
        on_expired: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        """Register coroutines awaited on each countdown tick and on expiry."""
        self._on_countdown_tick = on_tick
        self._on_countdown_expired = on_expired

    def _ledger_active(self) -> bool:
        return self.config_manager.is_daily_cap_enabled()

    def is_daily_cap_reached(self) -> bool:
        """True when the capped variant is active and no minutes are left today."""
        if not self._ledger_active():
            return False
        self.reward_ledger.reset_if_new_day()
        return self.reward_ledger.is_capped()

    def can_perform(self, action: Action) -> bool:
        if (self.mode, action) not in TRANSITIONS:
            return False
        if action is Action.EARN_MORE and self.is_daily_cap_reached():
            return False
        return True

    def available_actions(self) -> List[Action]:
        return [action for action in Action if self.can_perform(action)]

    # Transitions

    def _require(self, action: Action) -> None:
        if (self.mode, action) not in TRANSITIONS:
            self.logger.warning(
                f"Rejected action {action.value} in mode {self.mode.value}",
                extra={
                    'event_type': 'transition_rejected',
                    'mode': self.mode.value,
                    'action': action.value,
                    'timestamp': time.time()
                }
            )
            raise InvalidTransitionError(self.mode, action)

    def _transition(self, action: Action, new_state: AppState) -> None:
        """Apply a state change allowed by TRANSITIONS."""
        old_mode = self.mode
        allowed = TRANSITIONS.get((old_mode, action), frozenset())
        if new_state.mode not in allowed:
            raise InvalidTransitionError(old_mode, action)

        if old_mode is AppMode.UNLOCKED and new_state.mode is not AppMode.UNLOCKED:
            countdown = self.quiz_engine.countdown
            if countdown is not None:
                countdown.cancel()

        self._state = new_state
        self.logger.info(
            f"Mode {old_mode.value} -> {new_state.mode.value} ({action.value})",
            extra={
                'event_type': 'mode_transition',
                'from_mode': old_mode.value,
                'to_mode': new_state.mode.value,
                'action': action.value,
                'timestamp': time.time()
            }
        )

    def _new_session(self) -> QuizSession:
        settings = self.config_manager.get_reward_settings()
        questions = self.quiz_engine.generate_questions(settings.questions_per_session)
        self.logger.debug(f"Generated {len(questions)} questions for a new session")
        return QuizSession(settings=settings, questions=questions)

    def open_settings(self) -> Dict[str, Any]:
        self._require(Action.OPEN_SETTINGS)
        self._transition(Action.OPEN_SETTINGS, ParentSettingsState())
        return {
            'success': True,
            'mode': self.mode,
            'summary': self.config_manager.get_settings_summary()
        }

    def back(self) -> Dict[str, Any]:
        self._require(Action.BACK)
        self._transition(Action.BACK, HomeState())
        return {'success': True, 'mode': self.mode}

    def update_setting(self, name: str, raw: Any) -> Dict[str, Any]:
        """
        Edit a parent setting. Only allowed on the parent settings screen.

        Args:
            name: Setting name known to ConfigManager
            raw: Value as entered

        Returns:
            ConfigManager result dictionary
        """
        self._require(Action.UPDATE_SETTING)
        result = self.config_manager.update_setting(name, raw)
        if name == 'daily_max_minutes':
            self.reward_ledger.set_daily_max(result['value'])
        self._transition(Action.UPDATE_SETTING, ParentSettingsState())
        return result

    def start_challenge(self) -> Dict[str, Any]:
        """
        Start a fresh quiz session from home or the parent settings screen.

        Returns:
            Dictionary with session progress info
        """
        self._require(Action.START_CHALLENGE)
        self._transition(Action.START_CHALLENGE, QuizState(self._new_session()))
        return {
            'success': True,
            'mode': self.mode,
            'session_info': self.get_session_progress()
        }

    def exit_quiz(self) -> Dict[str, Any]:
        """Abandon the current session; the ledger is not touched."""
        self._require(Action.EXIT_QUIZ)
        session = self.session
        self._transition(Action.EXIT_QUIZ, HomeState())
        self.logger.info(
            f"Quiz abandoned at question {session.current_index + 1}/{len(session.questions)}"
        )
        return {'success': True, 'mode': self.mode}

    async def end_session(self) -> Dict[str, Any]:
        """Leave the unlocked screen, releasing the countdown."""
        self._require(Action.END_SESSION)
        seconds_left = self.seconds_remaining
        await self.quiz_engine.cancel_countdown()
        self._transition(Action.END_SESSION, HomeState())
        return {'success': True, 'mode': self.mode, 'seconds_left': seconds_left}

    async def earn_more(self) -> Dict[str, Any]:
        """
        Leave the unlocked screen for a new quiz session.

        Raises:
            InvalidTransitionError: If not on the unlocked screen
            DailyCapReachedError: If today's cap has been reached
        """
        self._require(Action.EARN_MORE)
        if self.is_daily_cap_reached():
            raise DailyCapReachedError(
                f"Daily limit of {self.reward_ledger.daily_max_minutes} minutes reached"
            )

        await self.quiz_engine.cancel_countdown()
        self._transition(Action.EARN_MORE, QuizState(self._new_session()))
        return {
            'success': True,
            'mode': self.mode,
            'session_info': self.get_session_progress()
        }

    def set_input(self, text: str) -> None:
        """Replace the answer input buffer of the current question."""
        self._require(Action.SUBMIT_ANSWER)
        self._state.session.input_buffer = text

    async def submit_answer(self, raw_answer: Optional[str] = None) -> Dict[str, Any]:
        """
        Score the answer in the input buffer and move the session along.

        Args:
            raw_answer: Text to place in the input buffer first, if given

        Returns:
            Dictionary with 'outcome' (SubmissionOutcome), 'mode', 'correct',
            'score_percent' and 'message' where relevant
        """
        self._require(Action.SUBMIT_ANSWER)
        state = self._state
        session = state.session

        if raw_answer is not None:
            session.input_buffer = raw_answer

        text = session.input_buffer.strip()
        if not text:
            return {
                'success': False,
                'outcome': SubmissionOutcome.IGNORED,
                'mode': self.mode,
                'message': "Type an answer first."
            }

        question = session.current_question
        correct = self.quiz_engine.is_correct(question, text)
        if correct:
            session.correct_count += 1

        total = session.settings.questions_per_session
        next_index = session.current_index + 1

        if next_index < total:
            session.current_index = next_index
            session.input_buffer = ""
            state.feedback = None
            return {
                'success': True,
                'outcome': SubmissionOutcome.ADVANCED,
                'mode': self.mode,
                'correct': correct,
                'expected_answer': question.expected_answer,
                'session_info': self.get_session_progress()
            }

        return await self._complete_session(session, correct, question.expected_answer)

    async def _complete_session(self, session: QuizSession, correct: bool, expected: int) -> Dict[str, Any]:
        total = session.settings.questions_per_session
        passing = session.settings.passing_percentage
        reward = session.settings.reward_minutes
        score = self.quiz_engine.score_percent(session.correct_count, total)

        self.logger.info(
            f"Session complete: {session.correct_count}/{total} = {score}% (pass mark {passing}%)",
            extra={
                'event_type': 'session_completed',
                'correct_count': session.correct_count,
                'total': total,
                'score_percent': score,
                'passing_percentage': passing,
                'timestamp': time.time()
            }
        )

        result = {
            'success': True,
            'correct': correct,
            'expected_answer': expected,
            'score_percent': score,
            'passing_percentage': passing
        }

        if not self.quiz_engine.is_passing(score, passing):
            message = f"You scored {score}%. You need {passing}% to unlock. Try a new set."
            self._transition(Action.SUBMIT_ANSWER, QuizState(self._new_session(), feedback=message))
            result.update({
                'outcome': SubmissionOutcome.FAILED,
                'mode': self.mode,
                'message': message,
                'session_info': self.get_session_progress()
            })
            return result

        if self.is_daily_cap_reached():
            cap = self.reward_ledger.daily_max_minutes
            message = (
                f"You scored {score}%, but today's limit of {cap} minutes has been reached. "
                "Come back tomorrow!"
            )
            self._transition(Action.SUBMIT_ANSWER, HomeState())
            result.update({
                'outcome': SubmissionOutcome.PASSED_AT_CAP,
                'mode': self.mode,
                'minutes_earned': 0,
                'message': message
            })
            return result

        credited = reward
        if self._ledger_active():
            credited = self.reward_ledger.add_earned_minutes(reward)

        seconds = reward * 60
        self._transition(Action.SUBMIT_ANSWER, UnlockedState(seconds_granted=seconds, minutes_earned=reward))
        self.quiz_engine.start_countdown(
            seconds,
            self.config_manager.get_tick_interval(),
            self._on_countdown_tick,
            self._on_countdown_expired
        )

        result.update({
            'outcome': SubmissionOutcome.PASSED,
            'mode': self.mode,
            'minutes_earned': reward,
            'minutes_credited': credited,
            'seconds_remaining': seconds,
            'message': f"You scored {score}% and earned {reward} minutes of play time!"
        })
        return result

    async def shutdown(self) -> None:
        """Release the countdown regardless of the current mode."""
        released = await self.quiz_engine.cancel_countdown()
        self.logger.info(f"QuizController shut down, countdown released: {released}")

    # Display values

    def get_session_progress(self) -> Optional[Dict[str, Any]]:
        """
        Get progress information for the active session.

        Returns:
            Dictionary with progress info, None outside the quiz screen
        """
        session = self.session
        if session is None:
            return None

        total = session.settings.questions_per_session
        question = session.current_question
        return {
            'current_question': session.current_index + 1,
            'total_questions': total,
            'progress_percent': progress_percent(session.current_index, total),
            'score_percent': self.quiz_engine.score_percent(session.correct_count, total),
            'correct_count': session.correct_count,
            'prompt': question.prompt if question else None,
            'feedback': self.feedback
        }

    def get_ledger_display(self) -> str:
        if not self._ledger_active():
            return "no daily cap"
        self.reward_ledger.reset_if_new_day()
        return f"{self.reward_ledger.earned_minutes_today}/{self.reward_ledger.daily_max_minutes} min"

    def get_status(self) -> Dict[str, Any]:
        """
        Snapshot of everything the screen shows.

        Returns:
            Dictionary with mode, available actions and derived display values
        """
        status = {
            'mode': self.mode,
            'available_actions': self.available_actions(),
            'ledger': self.get_ledger_display(),
            'daily_cap_reached': self.is_daily_cap_reached(),
            'session_info': self.get_session_progress(),
            'countdown': None
        }
        if isinstance(self._state, UnlockedState):
            status['countdown'] = format_countdown(self.seconds_remaining)
            status['minutes_earned'] = self._state.minutes_earned
        return status
