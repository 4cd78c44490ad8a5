import discord
from discord.ext import commands
import logging
import os
from typing import Optional, Dict, Any

from .config_manager import ConfigManager
from .quiz_controller import QuizController, QuizControllerError, DailyCapReachedError, Action
from .models import AppMode, SubmissionOutcome
from .quiz_engine import format_countdown

logger = logging.getLogger(__name__)

COLOR_SUCCESS = 0x00ff00
COLOR_INFO = 0x6699ff
COLOR_WARNING = 0xffaa00
COLOR_ERROR = 0xff0000

MODE_LABELS = {
    AppMode.HOME: "Home",
    AppMode.PARENT_SETTINGS: "Parent",
    AppMode.QUIZ: "Kid Challenge",
    AppMode.UNLOCKED: "Unlocked",
}

ACTION_COMMANDS = {
    Action.OPEN_SETTINGS: "`/parent_settings` - Parent Settings",
    Action.UPDATE_SETTING: "`/set_passing`, `/set_questions`, `/set_reward`, `/set_daily_cap` - Edit settings",
    Action.BACK: "`/back` - Back to home",
    Action.START_CHALLENGE: "`/start_challenge` - Kid: Start Challenge",
    Action.SUBMIT_ANSWER: "`/answer <number>` - Submit an answer",
    Action.EXIT_QUIZ: "`/exit` - Leave the challenge",
    Action.END_SESSION: "`/end_session` - End play time",
    Action.EARN_MORE: "`/earn_more` - Earn more play time",
}


def mode_label(mode: AppMode) -> str:
    return MODE_LABELS.get(mode, mode.value)


class ScreenTimeBot(commands.Bot):
    """Discord bot that renders the LevelED Up screen for one family"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.quiz_controller: Optional[QuizController] = None
        self._countdown_message: Optional[discord.Message] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            if self.app_config:
                self.config_manager.apply_config(self.app_config)

            self.quiz_controller = QuizController(self.config_manager)
            self.quiz_controller.set_countdown_listeners(
                on_tick=self.on_countdown_tick,
                on_expired=self.on_countdown_expired
            )

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        try:
            @self.tree.command(name="help", description="Show the screen time commands")
            async def help_command(interaction: discord.Interaction):
                await self.handle_help(interaction)

            @self.tree.command(name="status", description="Show the current screen")
            async def status_command(interaction: discord.Interaction):
                await self.handle_status(interaction)

            # Parent settings
            @self.tree.command(name="parent_settings", description="Open the parent settings screen")
            async def parent_settings_command(interaction: discord.Interaction):
                await self.handle_parent_settings(interaction)

            @self.tree.command(name="set_passing", description="Set the passing percentage (50-100)")
            async def set_passing_command(interaction: discord.Interaction, value: str):
                await self.handle_set_setting(interaction, 'passing_percentage', value)

            @self.tree.command(name="set_questions", description="Set the questions per session (5-30)")
            async def set_questions_command(interaction: discord.Interaction, value: str):
                await self.handle_set_setting(interaction, 'questions_per_session', value)

            @self.tree.command(name="set_reward", description="Set the reward minutes (1-60)")
            async def set_reward_command(interaction: discord.Interaction, value: str):
                await self.handle_set_setting(interaction, 'reward_minutes', value)

            @self.tree.command(name="set_daily_cap", description="Set the daily maximum minutes (10-240)")
            async def set_daily_cap_command(interaction: discord.Interaction, value: str):
                await self.handle_set_setting(interaction, 'daily_max_minutes', value)

            @self.tree.command(name="back", description="Leave parent settings")
            async def back_command(interaction: discord.Interaction):
                await self.handle_back(interaction)

            # Kid challenge
            @self.tree.command(name="start_challenge", description="Start a multiplication challenge")
            async def start_challenge_command(interaction: discord.Interaction):
                await self.handle_start_challenge(interaction)

            @self.tree.command(name="answer", description="Answer the current question")
            async def answer_command(interaction: discord.Interaction, answer: str):
                await self.handle_answer(interaction, answer)

            @self.tree.command(name="exit", description="Leave the challenge without finishing")
            async def exit_command(interaction: discord.Interaction):
                await self.handle_exit(interaction)

            # Unlocked
            @self.tree.command(name="end_session", description="Stop the play time countdown")
            async def end_session_command(interaction: discord.Interaction):
                await self.handle_end_session(interaction)

            @self.tree.command(name="earn_more", description="Take another challenge for more play time")
            async def earn_more_command(interaction: discord.Interaction):
                await self.handle_earn_more(interaction)

            logger.info("Slash commands registered successfully")

        except Exception as e:
            logger.error(f"Error setting up commands: {e}")
            raise

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        try:
            logger.info(f"Bot is ready! Logged in as {self.user}")

            try:
                synced = await self.tree.sync()
                logger.info(f"Synced {len(synced)} slash commands")
            except discord.HTTPException as e:
                logger.error(f"Failed to sync slash commands: {e}")

        except Exception as e:
            logger.error(f"Error in on_ready event: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        """Release the countdown before disconnecting"""
        if self.quiz_controller is not None:
            await self.quiz_controller.shutdown()
        await super().close()

    # Embeds

    def build_home_embed(self, message: Optional[str] = None) -> discord.Embed:
        embed = discord.Embed(
            title="🏠 Welcome",
            description=message or "Choose Parent Settings or start a Kid Challenge.",
            color=COLOR_INFO
        )
        embed.add_field(name="📅 Today", value=self.quiz_controller.get_ledger_display(), inline=False)
        embed.set_footer(text="This version unlocks an in-app play timer only.")
        return embed

    def build_settings_embed(self, title: str = "⚙️ Parent Settings") -> discord.Embed:
        embed = discord.Embed(
            title=title,
            description=f"```\n{self.config_manager.get_settings_summary()}\n```",
            color=COLOR_INFO
        )
        embed.add_field(
            name="🎮 Controls",
            value="`/set_passing`, `/set_questions`, `/set_reward`, `/set_daily_cap`\n"
                  "`/start_challenge` to start, `/back` to go home",
            inline=False
        )
        return embed

    def build_question_embed(self, session_info: Dict[str, Any], feedback: Optional[str] = None,
                             color: int = COLOR_SUCCESS) -> discord.Embed:
        embed = discord.Embed(
            title="✖️ Multiplication Challenge",
            description=f"# {session_info['prompt']}",
            color=color
        )
        if feedback:
            embed.add_field(name="⚠️ Try again", value=feedback, inline=False)
        embed.add_field(
            name="📊 Progress",
            value=(
                f"Question **{session_info['current_question']}** / {session_info['total_questions']}"
                f" ({session_info['progress_percent']}%)\n"
                f"Score: **{session_info['score_percent']}%**"
            ),
            inline=False
        )
        embed.set_footer(text="Reply with /answer, or /exit to leave")
        return embed

    def build_unlock_embed(self, seconds_remaining: int, message: Optional[str] = None) -> discord.Embed:
        expired = seconds_remaining <= 0
        embed = discord.Embed(
            title="⏰ Play time is over" if expired else "🔓 Unlocked ✅",
            description=message or "Play time remaining",
            color=COLOR_WARNING if expired else COLOR_SUCCESS
        )
        embed.add_field(name="⏱️ Timer", value=f"**{format_countdown(seconds_remaining)}**", inline=True)
        embed.add_field(name="📅 Today", value=self.quiz_controller.get_ledger_display(), inline=True)

        controls = "`/end_session` to finish"
        if self.quiz_controller.can_perform(Action.EARN_MORE):
            controls += ", `/earn_more` for another challenge"
        else:
            controls += " (daily limit reached)"
        embed.add_field(name="🎮 Controls", value=controls, inline=False)
        return embed

    # Countdown display

    async def on_countdown_tick(self, remaining: int):
        """Refresh the unlock message every few ticks"""
        interval = self.config_manager.get_display_update_interval()
        if remaining != 0 and remaining % interval != 0:
            return
        await self._edit_countdown_message(remaining)

    async def on_countdown_expired(self):
        await self._edit_countdown_message(0)

    async def _edit_countdown_message(self, remaining: int):
        if self._countdown_message is None:
            return
        try:
            await self._countdown_message.edit(embed=self.build_unlock_embed(remaining))
        except discord.HTTPException as e:
            logger.warning(f"Failed to refresh countdown message: {e}")

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="🎯 LevelED Up",
                description="Earn play time by leveling up your skills.",
                color=COLOR_SUCCESS
            )
            help_embed.add_field(
                name="👪 Parent",
                value=(
                    "`/parent_settings` - Open parent settings\n"
                    "`/set_passing <50-100>` - Passing percentage\n"
                    "`/set_questions <5-30>` - Questions per session\n"
                    "`/set_reward <1-60>` - Reward minutes\n"
                    "`/set_daily_cap <10-240>` - Daily maximum minutes\n"
                    "`/back` - Back to home"
                ),
                inline=False
            )
            help_embed.add_field(
                name="🧒 Kid",
                value=(
                    "`/start_challenge` - Start a challenge\n"
                    "`/answer <number>` - Answer the current question\n"
                    "`/exit` - Leave the challenge\n"
                    "`/end_session` - End play time\n"
                    "`/earn_more` - Earn more play time\n"
                    "`/status` - Show the current screen"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            await interaction.response.send_message(embed=help_embed)

        except Exception as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to show help", "❌ Help Error")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            status = self.quiz_controller.get_status()
            mode = status['mode']

            if mode is AppMode.QUIZ:
                embed = self.build_question_embed(status['session_info'], status['session_info']['feedback'])
            elif mode is AppMode.UNLOCKED:
                embed = self.build_unlock_embed(self.quiz_controller.seconds_remaining)
            elif mode is AppMode.PARENT_SETTINGS:
                embed = self.build_settings_embed()
            else:
                embed = self.build_home_embed()

            embed.set_author(name=f"Screen: {mode_label(mode)}")
            actions = [ACTION_COMMANDS[action] for action in status['available_actions']]
            embed.add_field(name="Available", value="\n".join(actions) or "-", inline=False)

            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in status command: {e}")
            await self.send_error_response(interaction, "Failed to get status", "❌ Status Error")

    async def handle_parent_settings(self, interaction: discord.Interaction):
        """Handle /parent_settings command"""
        try:
            self.quiz_controller.open_settings()
            await interaction.response.send_message(embed=self.build_settings_embed())
        except QuizControllerError as e:
            await self.send_info_response(interaction, str(e), "ℹ️ Not Available")
        except discord.HTTPException as e:
            logger.error(f"Discord error in parent_settings command: {e}")

    async def handle_set_setting(self, interaction: discord.Interaction, name: str, value: str):
        """Handle the /set_* settings commands"""
        try:
            result = self.quiz_controller.update_setting(name, value)
            embed = self.build_settings_embed(title=result['user_message'])
            await interaction.response.send_message(embed=embed)
        except QuizControllerError as e:
            await self.send_info_response(
                interaction,
                f"{e}\nOpen `/parent_settings` first.",
                "ℹ️ Not Available"
            )
        except discord.HTTPException as e:
            logger.error(f"Discord error in set {name} command: {e}")

    async def handle_back(self, interaction: discord.Interaction):
        """Handle /back command"""
        try:
            self.quiz_controller.back()
            await interaction.response.send_message(embed=self.build_home_embed())
        except QuizControllerError as e:
            await self.send_info_response(interaction, str(e), "ℹ️ Not Available")
        except discord.HTTPException as e:
            logger.error(f"Discord error in back command: {e}")

    async def handle_start_challenge(self, interaction: discord.Interaction):
        """Handle /start_challenge command"""
        try:
            result = self.quiz_controller.start_challenge()
            await interaction.response.send_message(embed=self.build_question_embed(result['session_info']))
        except QuizControllerError as e:
            await self.send_info_response(interaction, str(e), "ℹ️ Not Available")
        except discord.HTTPException as e:
            logger.error(f"Discord error in start_challenge command: {e}")

    async def handle_answer(self, interaction: discord.Interaction, answer: str):
        """Handle /answer command"""
        try:
            result = await self.quiz_controller.submit_answer(answer)
            outcome = result['outcome']

            if outcome is SubmissionOutcome.IGNORED:
                await self.send_info_response(interaction, result['message'], "ℹ️ No Answer")

            elif outcome is SubmissionOutcome.ADVANCED:
                await interaction.response.send_message(
                    embed=self.build_question_embed(result['session_info'])
                )

            elif outcome is SubmissionOutcome.FAILED:
                await interaction.response.send_message(
                    embed=self.build_question_embed(result['session_info'], result['message'], COLOR_WARNING)
                )

            elif outcome is SubmissionOutcome.PASSED_AT_CAP:
                await interaction.response.send_message(embed=self.build_home_embed(result['message']))

            else:
                embed = self.build_unlock_embed(result['seconds_remaining'], result['message'])
                await interaction.response.send_message(embed=embed)
                self._countdown_message = await interaction.original_response()

        except QuizControllerError as e:
            await self.send_info_response(
                interaction,
                f"{e}\nUse `/start_challenge` to begin.",
                "ℹ️ No Challenge Running"
            )
        except discord.HTTPException as e:
            logger.error(f"Discord error in answer command: {e}")

    async def handle_exit(self, interaction: discord.Interaction):
        """Handle /exit command"""
        try:
            self.quiz_controller.exit_quiz()
            await interaction.response.send_message(embed=self.build_home_embed())
        except QuizControllerError as e:
            await self.send_info_response(interaction, str(e), "ℹ️ Not Available")
        except discord.HTTPException as e:
            logger.error(f"Discord error in exit command: {e}")

    async def handle_end_session(self, interaction: discord.Interaction):
        """Handle /end_session command"""
        try:
            result = await self.quiz_controller.end_session()
            self._countdown_message = None
            message = f"Play time ended with {format_countdown(result['seconds_left'])} left."
            await interaction.response.send_message(embed=self.build_home_embed(message))
        except QuizControllerError as e:
            await self.send_info_response(interaction, str(e), "ℹ️ Not Available")
        except discord.HTTPException as e:
            logger.error(f"Discord error in end_session command: {e}")

    async def handle_earn_more(self, interaction: discord.Interaction):
        """Handle /earn_more command"""
        try:
            result = await self.quiz_controller.earn_more()
            self._countdown_message = None
            await interaction.response.send_message(embed=self.build_question_embed(result['session_info']))
        except DailyCapReachedError as e:
            await self.send_warning_response(interaction, f"{e}. Come back tomorrow!", "⚠️ Daily Limit")
        except QuizControllerError as e:
            await self.send_info_response(interaction, str(e), "ℹ️ Not Available")
        except discord.HTTPException as e:
            logger.error(f"Discord error in earn_more command: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_ephemeral(interaction, message, title, COLOR_ERROR)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_ephemeral(interaction, message, title, COLOR_INFO)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_ephemeral(interaction, message, title, COLOR_WARNING)

    async def _send_ephemeral(self, interaction: discord.Interaction, message: str, title: str, color: int):
        try:
            embed = discord.Embed(title=title, description=message, color=color)

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send response to user: {title}")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = ScreenTimeBot(config)

    try:
        logger.info("Starting LevelED Up bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
