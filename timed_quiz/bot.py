"""
Discord presentation layer for the timed quiz client.
Renders the quiz and session state; every mutation is delegated to a SessionClient.
"""
import logging
import os
from typing import Dict, Optional

import discord
from discord.ext import commands

from .authority_client import AuthorityClient
from .config_manager import ConfigManager
from .models import Quiz, Result, SessionEvent, SessionEventType, SessionStatus
from .session_client import SessionClient
from .session_store import SessionStore

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    SessionStatus.LOADING: 0x999999,
    SessionStatus.RUNNING: 0x00ff00,
    SessionStatus.FINISHED: 0x6699ff,
}


def format_clock(seconds: Optional[int]) -> str:
    """Format a second count as m:ss. None renders as 0:00."""
    seconds = max(0, int(seconds or 0))
    return f"{seconds // 60}:{seconds % 60:02d}"


def build_quiz_embed(client: SessionClient) -> discord.Embed:
    """Render the questions together with the countdown and current answers."""
    quiz: Optional[Quiz] = client.quiz
    embed = discord.Embed(
        title="📝 Timed Quiz",
        color=STATUS_COLORS[client.status]
    )

    if quiz is None:
        embed.description = "Loading..."
        return embed

    embed.description = (
        f"Duration: {format_clock(quiz.duration_seconds)}  •  "
        f"Remaining: {format_clock(client.remaining)}  •  "
        f"Status: {client.status.value}"
    )

    answers = client.answers
    for question in quiz.questions:
        selected = answers.get(question.id)
        lines = []
        for i, choice in enumerate(question.choices):
            marker = "🔘" if selected == i else "⚪"
            lines.append(f"{marker} {i + 1}. {choice}")
        embed.add_field(
            name=f"{question.id}. {question.prompt}",
            value="\n".join(lines) or "(no choices)",
            inline=False
        )

    if client.status is SessionStatus.RUNNING:
        embed.set_footer(text="Answer with /answer, submit early with /submit")
    return embed


def build_status_embed(client: SessionClient) -> discord.Embed:
    """Render a compact session status summary."""
    embed = discord.Embed(
        title="📊 Quiz Status",
        color=STATUS_COLORS[client.status]
    )
    embed.add_field(name="Status", value=client.status.value, inline=True)
    embed.add_field(name="Remaining", value=format_clock(client.remaining), inline=True)

    total = len(client.quiz.questions) if client.quiz else 0
    embed.add_field(name="Answered", value=f"{len(client.answers)}/{total}", inline=True)
    embed.add_field(name="Session", value=client.session_id or "none", inline=False)
    return embed


def build_result_embed(result: Result) -> discord.Embed:
    """Render the final result returned by the authority."""
    embed = discord.Embed(
        title="🏁 Result",
        description=f"Score: {result.score} / {result.total}",
        color=0x6699ff
    )
    if result.answers:
        lines = [f"{question_id}: {choice}" for question_id, choice in result.answers.items()]
        embed.add_field(name="Submitted answers", value="```\n" + "\n".join(lines) + "\n```", inline=False)
    embed.set_footer(text="Use /reset to start a new quiz")
    return embed


class QuizBot(commands.Bot):
    """Discord bot hosting one quiz session client per channel"""

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
        self.config_manager = ConfigManager()
        self.authority: Optional[AuthorityClient] = None
        self.clients: Dict[int, SessionClient] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            errors = self.config_manager.apply_config(self.app_config)
            for error in errors:
                logger.warning(f"Configuration value rejected: {error}")

            settings = self.config_manager.get_client_settings()
            self.authority = AuthorityClient(settings.authority_url)

            await self.setup_commands()
            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz", description="Start or resume the quiz in this channel")
        async def quiz_command(interaction: discord.Interaction):
            await self.handle_quiz(interaction)

        @self.tree.command(name="answer", description="Select a choice for a question")
        async def answer_command(interaction: discord.Interaction, question: str, choice: int):
            await self.handle_answer(interaction, question, choice)

        @self.tree.command(name="sync", description="Resynchronize the countdown with the server now")
        async def sync_command(interaction: discord.Interaction):
            await self.handle_sync(interaction)

        @self.tree.command(name="submit", description="Finish the quiz now and show the result")
        async def submit_command(interaction: discord.Interaction):
            await self.handle_submit(interaction)

        @self.tree.command(name="status", description="Show the current session status")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="reset", description="Forget this channel's session and start over")
        async def reset_command(interaction: discord.Interaction):
            await self.handle_reset(interaction)

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_ready(self):
        logger.info(f"Logged in as {self.user} (ID: {getattr(self.user, 'id', None)})")

    def get_client(self, channel_id: int) -> SessionClient:
        """Return the session client for a channel, creating it on first use."""
        client = self.clients.get(channel_id)
        if client is None:
            settings = self.config_manager.get_client_settings()
            store = SessionStore(settings.session_file, f"{settings.session_key}:{channel_id}")
            client = SessionClient(self.authority, store, settings)
            client.add_listener(self._make_listener(channel_id))
            self.clients[channel_id] = client
        return client

    def _make_listener(self, channel_id: int):
        async def on_session_event(event: SessionEvent):
            if event.type is SessionEventType.STATUS_CHANGED and event.data.get('auto'):
                await self.post_to_channel(channel_id, content="⏰ Time is up! Submitting your answers...")
            elif event.type is SessionEventType.RESULT_READY:
                client = self.clients.get(channel_id)
                if client is not None and client.result is not None:
                    await self.post_to_channel(channel_id, embed=build_result_embed(client.result))
        return on_session_event

    async def post_to_channel(self, channel_id: int, content: str = None, embed: discord.Embed = None):
        channel = self.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Channel {channel_id} not available for session update")
            return
        try:
            await channel.send(content=content, embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to post session update to channel {channel_id}: {e}")

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="🎯 Quiz Commands",
            description="Commands for taking the timed quiz",
            color=0x00ff00
        )
        embed.add_field(
            name="🎮 Quiz",
            value=(
                "`/quiz` - Start or resume the quiz in this channel\n"
                "`/answer <question> <choice>` - Select a choice (numbered from 1)\n"
                "`/submit` - Finish now and show the result\n"
                "`/sync` - Correct the countdown against the server\n"
                "`/status` - Show remaining time and progress\n"
                "`/reset` - Forget this session and start a new one"
            ),
            inline=False
        )
        embed.add_field(
            name="⚙️ Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_quiz(self, interaction: discord.Interaction):
        """Handle /quiz command"""
        client = self.get_client(interaction.channel_id)
        await interaction.response.defer()

        if client.status is SessionStatus.LOADING:
            session = await client.start_or_resume()
            if session is None:
                await self.send_error_response(
                    interaction,
                    "Could not reach the quiz server. Try /quiz again in a moment.",
                    "❌ Quiz Unavailable"
                )
                return

        if client.status is SessionStatus.FINISHED and client.result is None:
            await client.finish(auto=False)

        await interaction.followup.send(embed=build_quiz_embed(client))

    async def handle_answer(self, interaction: discord.Interaction, question: str, choice: int):
        """Handle /answer command"""
        client = self.clients.get(interaction.channel_id)
        if client is None or client.status is not SessionStatus.RUNNING:
            await self.send_error_response(interaction, "No running quiz in this channel. Use /quiz first.")
            return

        try:
            client.select_answer(question, choice - 1)
        except ValueError as e:
            await self.send_error_response(interaction, str(e), "❌ Invalid Answer")
            return

        await self.send_info_response(
            interaction,
            f"Question {question}: choice {choice} selected. Remaining {format_clock(client.remaining)}",
            "✅ Answer Saved"
        )

    async def handle_sync(self, interaction: discord.Interaction):
        """Handle /sync command"""
        client = self.clients.get(interaction.channel_id)
        if client is None or client.status is not SessionStatus.RUNNING:
            await self.send_error_response(interaction, "No running quiz in this channel.")
            return

        await interaction.response.defer(ephemeral=True)
        snapshot = await client.resync()
        if snapshot is None:
            await self.send_warning_response(interaction, "Server did not respond; countdown unchanged.")
            return
        await interaction.followup.send(embed=build_status_embed(client), ephemeral=True)

    async def handle_submit(self, interaction: discord.Interaction):
        """Handle /submit command"""
        client = self.clients.get(interaction.channel_id)
        if client is None or client.status is SessionStatus.LOADING:
            await self.send_error_response(interaction, "No quiz in this channel. Use /quiz first.")
            return

        await interaction.response.defer()
        result = await client.finish(auto=False)
        if result is None:
            await self.send_warning_response(interaction, "Quiz finished, but the result is not available yet.")
            return
        await interaction.followup.send(embed=build_result_embed(result))

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        client = self.clients.get(interaction.channel_id)
        if client is None:
            await self.send_info_response(interaction, "No quiz has been started in this channel.")
            return
        await interaction.response.send_message(embed=build_status_embed(client), ephemeral=True)

    async def handle_reset(self, interaction: discord.Interaction):
        """Handle /reset command"""
        client = self.get_client(interaction.channel_id)
        client.reset()
        await self.send_info_response(interaction, "Session cleared. Use /quiz to start a new one.", "🔄 Reset")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=0xff0000))

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=0x6699ff))

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=0xffaa00))

    async def _send_embed(self, interaction: discord.Interaction, embed: discord.Embed):
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send response: {embed.title}")

    async def close(self):
        """Tear down every session client before disconnecting."""
        for channel_id, client in list(self.clients.items()):
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Error closing session client for channel {channel_id}: {e}")
        self.clients.clear()
        if self.authority is not None:
            await self.authority.close()
        await super().close()


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting timed quiz bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
