"""
Configuration manager for the parent-controlled quiz and reward settings.
"""
import logging
import math
from typing import Optional, Dict, Any

from .models import RewardSettings


def _as_number(raw: Any) -> Optional[float]:
    """Parse raw input as a finite number, or None."""
    if isinstance(raw, bool):
        return None
    try:
        number = float(raw.strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError, OverflowError):
        return None

    if not math.isfinite(number):
        return None
    return number


def clamp_setting(raw: Any, minimum: int, maximum: int) -> int:
    """
    Coerce raw input into an integer within [minimum, maximum].

    Non-numeric or non-finite input falls back to the lower bound. Numbers are
    rounded half-up before clamping, so an in-range integer comes back unchanged.

    Args:
        raw: Value as entered (int, float, numeric string or anything else)
        minimum: Lowest legal value
        maximum: Highest legal value

    Returns:
        Legal integer value
    """
    number = _as_number(raw)
    if number is None:
        return minimum

    return max(minimum, min(maximum, math.floor(number + 0.5)))


class ConfigManager:
    """Settings store for quiz difficulty and reward parameters."""

    # Default configuration values
    DEFAULT_PASSING_PERCENTAGE = 80
    DEFAULT_QUESTIONS_PER_SESSION = 10
    DEFAULT_REWARD_MINUTES = 10
    DEFAULT_DAILY_MAX_MINUTES = 60
    DEFAULT_DAILY_CAP_ENABLED = True
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_DISPLAY_UPDATE_INTERVAL = 15

    # Validation limits
    MIN_PASSING_PERCENTAGE = 50
    MAX_PASSING_PERCENTAGE = 100
    MIN_QUESTIONS_PER_SESSION = 5
    MAX_QUESTIONS_PER_SESSION = 30
    MIN_REWARD_MINUTES = 1
    MAX_REWARD_MINUTES = 60
    MIN_DAILY_MAX_MINUTES = 10
    MAX_DAILY_MAX_MINUTES = 240
    MIN_DISPLAY_UPDATE_INTERVAL = 1
    MAX_DISPLAY_UPDATE_INTERVAL = 60

    # setting name -> (attribute, minimum, maximum, label)
    NUMERIC_SETTINGS = {
        'passing_percentage': ('passing_percentage', MIN_PASSING_PERCENTAGE, MAX_PASSING_PERCENTAGE, "Passing %"),
        'questions_per_session': ('questions_per_session', MIN_QUESTIONS_PER_SESSION, MAX_QUESTIONS_PER_SESSION, "Questions per session"),
        'reward_minutes': ('reward_minutes', MIN_REWARD_MINUTES, MAX_REWARD_MINUTES, "Reward minutes"),
        'daily_max_minutes': ('daily_max_minutes', MIN_DAILY_MAX_MINUTES, MAX_DAILY_MAX_MINUTES, "Daily max minutes"),
    }

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = RewardSettings()
        self._tick_interval = self.DEFAULT_TICK_INTERVAL
        self._display_update_interval = self.DEFAULT_DISPLAY_UPDATE_INTERVAL

    def get_reward_settings(self) -> RewardSettings:
        """
        Get a snapshot of the current settings.

        Returns:
            Copy of the settings; mutating it does not touch the store
        """
        return RewardSettings(
            passing_percentage=self._settings.passing_percentage,
            questions_per_session=self._settings.questions_per_session,
            reward_minutes=self._settings.reward_minutes,
            daily_max_minutes=self._settings.daily_max_minutes,
            daily_cap_enabled=self._settings.daily_cap_enabled
        )

    def update_setting(self, name: str, raw: Any) -> Dict[str, Any]:
        """
        Clamp and store a numeric setting.

        Args:
            name: One of NUMERIC_SETTINGS
            raw: Value as entered by the parent

        Returns:
            Dictionary with the stored value, whether it was clamped and messages

        Raises:
            KeyError: If the setting name is unknown
        """
        if name not in self.NUMERIC_SETTINGS:
            raise KeyError(f"Unknown setting: {name}")

        attribute, minimum, maximum, label = self.NUMERIC_SETTINGS[name]
        previous = getattr(self._settings, attribute)
        value = clamp_setting(raw, minimum, maximum)
        setattr(self._settings, attribute, value)

        clamped = _as_number(raw) != value
        if clamped:
            self.logger.info(
                f"{label} input {raw!r} clamped to {value}",
                extra={
                    'event_type': 'setting_clamped',
                    'setting': name,
                    'raw_value': repr(raw),
                    'value': value
                }
            )
        else:
            self.logger.info(f"{label} set to {value}")

        return {
            'success': True,
            'setting': name,
            'value': value,
            'previous_value': previous,
            'clamped': clamped,
            'message': f"{label} set to {value}",
            'user_message': (
                f"✅ {label} set to {value}"
                + (f" (allowed range {minimum}-{maximum})" if clamped else "")
            )
        }

    def set_passing_percentage(self, raw: Any) -> Dict[str, Any]:
        return self.update_setting('passing_percentage', raw)

    def set_questions_per_session(self, raw: Any) -> Dict[str, Any]:
        return self.update_setting('questions_per_session', raw)

    def set_reward_minutes(self, raw: Any) -> Dict[str, Any]:
        return self.update_setting('reward_minutes', raw)

    def set_daily_max_minutes(self, raw: Any) -> Dict[str, Any]:
        return self.update_setting('daily_max_minutes', raw)

    def set_daily_cap_enabled(self, enabled: bool) -> Dict[str, Any]:
        """
        Switch between the capped (ledger) and uncapped variants.

        Args:
            enabled: True to enforce the daily cap

        Returns:
            Dictionary with success status and messages
        """
        if not isinstance(enabled, bool):
            error_msg = f"Daily cap flag must be a boolean, got {type(enabled).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            }

        self._settings.daily_cap_enabled = enabled
        state = "enabled" if enabled else "disabled"
        self.logger.info(f"Daily cap {state}")
        return {
            'success': True,
            'value': enabled,
            'message': f"Daily cap {state}",
            'user_message': f"✅ Daily cap {state}"
        }

    def get_passing_percentage(self) -> int:
        return self._settings.passing_percentage

    def get_questions_per_session(self) -> int:
        return self._settings.questions_per_session

    def get_reward_minutes(self) -> int:
        return self._settings.reward_minutes

    def get_daily_max_minutes(self) -> int:
        return self._settings.daily_max_minutes

    def is_daily_cap_enabled(self) -> bool:
        return self._settings.daily_cap_enabled

    def set_tick_interval(self, seconds: Any) -> Dict[str, Any]:
        """Set the countdown tick period in seconds (non-positive input keeps the default)."""
        try:
            value = float(seconds)
        except (TypeError, ValueError, OverflowError):
            value = self.DEFAULT_TICK_INTERVAL

        if not math.isfinite(value) or value <= 0:
            value = self.DEFAULT_TICK_INTERVAL

        self._tick_interval = value
        self.logger.info(f"Countdown tick interval set to {value}s")
        return {'success': True, 'value': value, 'message': f"Tick interval set to {value}s"}

    def get_tick_interval(self) -> float:
        return self._tick_interval

    def set_display_update_interval(self, raw: Any) -> Dict[str, Any]:
        """Set how many ticks pass between countdown display refreshes."""
        value = clamp_setting(raw, self.MIN_DISPLAY_UPDATE_INTERVAL, self.MAX_DISPLAY_UPDATE_INTERVAL)
        self._display_update_interval = value
        self.logger.info(f"Countdown display update interval set to {value} ticks")
        return {'success': True, 'value': value, 'message': f"Display update interval set to {value}"}

    def get_display_update_interval(self) -> int:
        return self._display_update_interval

    def apply_config(self, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Apply the `rewards` and `countdown` blocks of a loaded config.json.

        Missing keys keep their defaults; present keys go through the same
        clamping setters the parent uses.

        Args:
            config: Parsed configuration dictionary

        Returns:
            Dictionary listing applied keys and any values that were clamped
        """
        applied = []
        clamped = []
        config = config or {}

        rewards = config.get('rewards', {}) or {}
        for name in self.NUMERIC_SETTINGS:
            if name in rewards:
                result = self.update_setting(name, rewards[name])
                applied.append(name)
                if result['clamped']:
                    clamped.append(name)

        if 'daily_cap_enabled' in rewards:
            result = self.set_daily_cap_enabled(bool(rewards['daily_cap_enabled']))
            if result['success']:
                applied.append('daily_cap_enabled')

        countdown = config.get('countdown', {}) or {}
        if 'tick_interval' in countdown:
            self.set_tick_interval(countdown['tick_interval'])
            applied.append('tick_interval')
        if 'display_update_interval' in countdown:
            self.set_display_update_interval(countdown['display_update_interval'])
            applied.append('display_update_interval')

        self.logger.info(
            f"Configuration applied: {len(applied)} keys, {len(clamped)} clamped",
            extra={
                'event_type': 'config_applied',
                'applied': applied,
                'clamped': clamped
            }
        )
        return {'success': True, 'applied': applied, 'clamped': clamped}

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = RewardSettings(
            passing_percentage=self.DEFAULT_PASSING_PERCENTAGE,
            questions_per_session=self.DEFAULT_QUESTIONS_PER_SESSION,
            reward_minutes=self.DEFAULT_REWARD_MINUTES,
            daily_max_minutes=self.DEFAULT_DAILY_MAX_MINUTES,
            daily_cap_enabled=self.DEFAULT_DAILY_CAP_ENABLED
        )
        self._tick_interval = self.DEFAULT_TICK_INTERVAL
        self._display_update_interval = self.DEFAULT_DISPLAY_UPDATE_INTERVAL
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        for name, (attribute, minimum, maximum, label) in self.NUMERIC_SETTINGS.items():
            value = getattr(self._settings, attribute)
            if (not isinstance(value, int) or isinstance(value, bool) or
                    value < minimum or value > maximum):
                validation_result["valid"] = False
                validation_result["issues"].append(f"Invalid {label.lower()}: {value}")

        if not isinstance(self._settings.daily_cap_enabled, bool):
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid daily cap flag: {self._settings.daily_cap_enabled}"
            )

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        cap_str = (
            f"{self._settings.daily_max_minutes} minutes"
            if self._settings.daily_cap_enabled
            else "off"
        )
        return (
            f"Reward Settings:\n"
            f"• Passing score: {self._settings.passing_percentage}%\n"
            f"• Questions per session: {self._settings.questions_per_session}\n"
            f"• Reward: {self._settings.reward_minutes} minutes\n"
            f"• Daily cap: {cap_str}"
        )
