"""
Quiz engine core logic for the LevelED Up bot.
Handles question generation, answer scoring, and the play time countdown.
"""
import random
import asyncio
import logging
import math
import time
from typing import List, Optional, Callable, Awaitable, Dict, Any

from .models import Question

# Set up logger for timer operations
logger = logging.getLogger(__name__)

OPERAND_MIN = 0
OPERAND_MAX = 12
HARD_OPERAND_MIN = 6
HARD_OPERAND_BIAS = 0.65


def round_half_up_percent(part: int, whole: int) -> int:
    """
    Integer percentage of part/whole rounded half-up.

    Uses integer arithmetic so exact boundaries such as 8/10 land on 80.
    A non-positive whole is treated as 1.
    """
    whole = max(1, whole)
    return (200 * part + whole) // (2 * whole)


def progress_percent(current_index: int, total: int) -> int:
    """Progress through a session as shown while answering question current_index."""
    return round_half_up_percent(current_index + 1, total)


def format_countdown(seconds: int) -> str:
    """Format remaining seconds as MM:SS, both parts zero padded."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def parse_answer(raw: str) -> Optional[float]:
    """
    Parse a typed answer as a finite number.

    Returns:
        The number, or None when the text is not numeric
    """
    try:
        value = float(raw.strip())
    except (AttributeError, ValueError):
        return None

    if not math.isfinite(value):
        return None
    return value


class TimerLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_timer_created(timer_id: str, duration: int) -> None:
        """Log countdown creation."""
        logger.info(
            f"Timer lifecycle: CREATED - Timer {timer_id}, Duration {duration}s",
            extra={
                'event_type': 'timer_created',
                'timer_id': timer_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_start(timer_id: str) -> None:
        """Log countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Timer {timer_id}",
            extra={
                'event_type': 'timer_countdown_start',
                'timer_id': timer_id,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(timer_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 60 == 0 or remaining_time <= 5:
            progress = ((total_duration - remaining_time) / max(1, total_duration)) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Timer {timer_id}, Remaining {remaining_time}s ({progress:.1f}% spent)",
                extra={
                    'event_type': 'timer_update',
                    'timer_id': timer_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(timer_id: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Timer {timer_id}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'timer_id': timer_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(timer_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.info(
            f"Timer lifecycle: STATE_TRANSITION - Timer {timer_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'timer_id': timer_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(timer_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Timer {timer_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'timer_id': timer_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(timer_id: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Timer {timer_id}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'timer_id': timer_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class CountdownTimer:
    """Counts earned play time down to zero, one tick at a time."""

    def __init__(self, seconds: int, tick_interval: float = 1.0, timer_id: str = "unlock"):
        """
        Initialize the timer.

        Args:
            seconds: Starting number of seconds
            tick_interval: Real seconds between ticks
            timer_id: Name used in lifecycle logs
        """
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = max(0, int(seconds))
        self._total_duration = self._remaining_time
        self._tick_interval = tick_interval
        self._is_cancelled = False
        self._timer_id = timer_id

    def tick(self) -> bool:
        """
        Advance the countdown by one second.

        Returns:
            True if the remaining time was decremented, False if already at zero
        """
        if self._remaining_time <= 0:
            return False
        self._remaining_time = max(0, self._remaining_time - 1)
        return True

    async def run(
        self,
        update_callback: Optional[Callable[[int], Awaitable[Any]]] = None,
        completion_callback: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        """
        Tick once per interval until zero or cancellation.

        Args:
            update_callback: Awaited after each tick with the remaining seconds
            completion_callback: Awaited once when the countdown reaches zero
        """
        TimerLifecycleLogger.log_timer_start(self._timer_id)

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                await asyncio.sleep(self._tick_interval)
                if self._is_cancelled:
                    break

                self.tick()
                TimerLifecycleLogger.log_timer_update(
                    self._timer_id,
                    self._remaining_time,
                    self._total_duration
                )
                if update_callback is not None:
                    await update_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(
                    self._timer_id,
                    "cancelled",
                    self._total_duration
                )
            else:
                TimerLifecycleLogger.log_timer_completion(
                    self._timer_id,
                    "natural_expiry",
                    self._total_duration
                )
                if completion_callback is not None:
                    await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(
                self._timer_id,
                "asyncio_cancelled",
                self._total_duration
            )
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._timer_id,
                "countdown_execution_error",
                str(e),
                "run"
            )
            raise

    def cancel(self) -> None:
        """Stop issuing ticks and cancel the backing task, if any."""
        self._is_cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
            TimerLifecycleLogger.log_timer_state_transition(
                self._timer_id,
                "running",
                "cancelled",
                "task cancelled"
            )

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def remaining_time(self) -> int:
        return self._remaining_time

    @property
    def total_duration(self) -> int:
        return self._total_duration


class QuizEngine:
    """Generates question batches, scores answers and owns the unlock countdown."""

    def __init__(self, rng: Optional[random.Random] = None):
        """
        Initialize the quiz engine.

        Args:
            rng: Random source for question generation, seeded in tests
        """
        self._rng = rng or random.Random()
        self._timer: Optional[CountdownTimer] = None

    def _draw_operand(self) -> int:
        if self._rng.random() < HARD_OPERAND_BIAS:
            return self._rng.randint(HARD_OPERAND_MIN, OPERAND_MAX)
        return self._rng.randint(OPERAND_MIN, OPERAND_MAX)

    def generate_questions(self, count: int) -> List[Question]:
        """
        Generate a fresh batch of multiplication questions.

        Each operand independently leans towards the harder 6-12 range.

        Args:
            count: Number of questions in the batch

        Returns:
            List of exactly count questions (empty if count < 1)
        """
        questions = []
        for _ in range(max(0, count)):
            a = self._draw_operand()
            b = self._draw_operand()
            questions.append(Question(a, b, a * b))
        return questions

    @staticmethod
    def is_correct(question: Question, raw_answer: str) -> bool:
        """Non-numeric answers are simply wrong."""
        value = parse_answer(raw_answer)
        return value is not None and value == question.expected_answer

    @staticmethod
    def score_percent(correct_count: int, total: int) -> int:
        return round_half_up_percent(correct_count, total)

    @staticmethod
    def is_passing(score: int, passing_percentage: int) -> bool:
        return score >= passing_percentage

    def _verify_timer_readiness(self) -> bool:
        """
        Verify no running countdown before starting a new one.

        Returns:
            True if ready to start new timer, False if a running timer was found
        """
        if self._timer is None:
            return True

        if self._timer.is_running:
            TimerLifecycleLogger.log_race_condition_detected(
                "unlock",
                f"Running countdown found with {self._timer.remaining_time}s left"
            )
            return False

        self._timer = None
        return True

    def start_countdown(
        self,
        seconds: int,
        tick_interval: float = 1.0,
        update_callback: Optional[Callable[[int], Awaitable[Any]]] = None,
        completion_callback: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> CountdownTimer:
        """
        Start the unlock countdown as a background task.

        Must be called from inside a running event loop. A countdown that is
        still running is cancelled first.

        Args:
            seconds: Play time to count down
            tick_interval: Real seconds between ticks
            update_callback: Awaited after each tick with remaining seconds
            completion_callback: Awaited once when the countdown hits zero

        Returns:
            The started CountdownTimer
        """
        if not self._verify_timer_readiness():
            self._timer.cancel()

        timer = CountdownTimer(seconds, tick_interval)
        self._timer = timer
        TimerLifecycleLogger.log_timer_created("unlock", timer.total_duration)

        timer._task = asyncio.create_task(timer.run(update_callback, completion_callback))
        return timer

    async def cancel_countdown(self) -> bool:
        """
        Cancel the unlock countdown and wait for its task to finish.

        Returns:
            True if a countdown was released, False if none was registered
        """
        timer = self._timer
        if timer is None:
            logger.debug("No countdown to cancel")
            return False

        self._timer = None
        timer.cancel()

        task = timer._task
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                TimerLifecycleLogger.log_timer_error(
                    "unlock",
                    "cleanup_exception",
                    str(e),
                    "cancel_countdown"
                )

        TimerLifecycleLogger.log_timer_state_transition(
            "unlock",
            "cancelled",
            "released",
            "countdown removed from engine"
        )
        return True

    @property
    def countdown(self) -> Optional[CountdownTimer]:
        return self._timer

    def get_timer_status(self) -> Optional[Dict[str, Any]]:
        """
        Get status of the unlock countdown.

        Returns:
            Dictionary with timer status, None if no countdown registered
        """
        if self._timer is None:
            return None

        return {
            'remaining_time': self._timer.remaining_time,
            'total_duration': self._timer.total_duration,
            'is_running': self._timer.is_running,
            'is_cancelled': self._timer.is_cancelled,
            'formatted': format_countdown(self._timer.remaining_time)
        }
