#!/usr/bin/env python3
"""
Telegram bot that relays Google Drive files into the chat.

Send it a Drive sharing link and it downloads the file, works out what
kind of file it is and sends it back as a video, photo, audio track or
document.
Dependencies: pyrogram, requests, python-magic, python-dotenv
"""

import asyncio
import logging
import sys
import time
from datetime import datetime
from typing import List, Optional

from pyrogram import Client, enums, filters, idle
from pyrogram.errors import FloodWait, MessageNotModified, RPCError
from pyrogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from drivebot.classifier import detect_file_type, format_size, security_warnings
from drivebot.cleanup import TempFileJanitor, remove_file
from drivebot.config import Settings
from drivebot.delivery import send_file
from drivebot.downloader import DriveDownloader
from drivebot.errors import ConfigError, DownloadError, user_message
from drivebot.links import DriveReference, SourceFormat, find_drive_references, normalize_drive_url, sharing_url
from drivebot.log import setup_logging, short_id
from drivebot.store import BotStore, FileRecord, Totals, UserStats

logger = logging.getLogger(__name__)

COMMANDS = ["start", "help", "status", "stats", "files", "info", "admin"]
FILES_PER_PAGE = 10
ADMIN_USERS_SHOWN = 10
BUTTON_NAME_LENGTH = 30


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime('%Y-%m-%d %H:%M')


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours}h {minutes}m {seconds % 60}s"


def welcome_text(settings: Settings) -> str:
    return (
        "🤖 **Google Drive File Bot**\n\n"
        "Send me a Google Drive sharing link and I'll download the file and send it right here.\n\n"
        f"• Files up to {settings.max_file_size_mb}MB\n"
        "• Videos are sent as streamable videos 🎥\n"
        "• Images as photos 📷, music as audio 🎵\n"
        "• Everything else as a document 📄\n\n"
        "Just paste a link to get started! 🚀"
    )


def help_text(settings: Settings) -> str:
    return (
        "**Google Drive File Bot Help** 🤖\n\n"
        "**Supported link formats:**\n"
        "• https://drive.google.com/file/d/FILE_ID/view\n"
        "• https://drive.google.com/open?id=FILE_ID\n"
        "• https://drive.google.com/uc?id=FILE_ID&export=download\n"
        "• https://docs.google.com/document/d/FILE_ID\n\n"
        "**Limitations:**\n"
        f"• Maximum file size: {settings.max_file_size_mb}MB\n"
        "• Files must be shared with \"Anyone with the link\"\n"
        f"• Up to {settings.max_links_per_message} links per message\n\n"
        "**📋 Commands:**\n"
        "/start - Welcome message\n"
        "/help - This help message\n"
        "/status - Bot status\n"
        "/stats - Your usage statistics\n"
        "/files - Your recent downloads\n"
        "/info <link> - File details without downloading\n"
        "/admin - Admin dashboard (authorized users)"
    )


def status_text(settings: Settings, totals: Totals, uptime: float) -> str:
    return (
        "**Bot Status** ✅\n\n"
        "🟢 Status: Active\n"
        f"⏱️ Uptime: {_format_uptime(uptime)}\n"
        f"📁 Max File Size: {settings.max_file_size_mb}MB\n"
        f"⏰ Download timeout: {settings.download_timeout:.0f}s\n"
        f"👥 Users: {totals.users}\n"
        f"📥 Downloads: {totals.downloads}"
    )


def stats_text(stats: UserStats) -> str:
    return (
        "📊 **Your Statistics**\n\n"
        f"• Messages sent: {stats.message_count}\n"
        f"• Files downloaded: {stats.download_count}\n"
        f"• First seen: {_format_time(stats.first_seen)}\n"
        f"• Last activity: {_format_time(stats.last_activity)}"
    )


def files_text(records: List[FileRecord]) -> str:
    if not records:
        return "📂 You haven't downloaded any files yet.\n\nSend me a Google Drive link to get started!"

    lines = [f"📂 **Your recent files** ({len(records)})\n"]
    for index, record in enumerate(records[:FILES_PER_PAGE], 1):
        lines.append(f"{index}. {record.name} — {format_size(record.size)} — {_format_time(record.downloaded_at)}")
    if len(records) > FILES_PER_PAGE:
        lines.append(f"\n…and {len(records) - FILES_PER_PAGE} more")
    return "\n".join(lines)


def file_details_text(record: FileRecord) -> str:
    return (
        "📄 **File details**\n\n"
        f"📝 Name: {record.name}\n"
        f"💾 Size: {format_size(record.size)}\n"
        f"🏷️ Type: {record.mime_type}\n"
        f"🕒 Downloaded: {_format_time(record.downloaded_at)}\n"
        f"🔗 {sharing_url(record.drive_file_id)}"
    )


def admin_dashboard_text(totals: Totals, uptime: float) -> str:
    return (
        "🔧 **Admin Dashboard**\n\n"
        f"⏱️ Uptime: {_format_uptime(uptime)}\n"
        f"👥 Total users: {totals.users}\n"
        f"🟢 Active (24h): {totals.active_users}\n"
        f"💬 Messages: {totals.messages}\n"
        f"📥 Downloads: {totals.downloads}"
    )


def admin_users_text(store: BotStore) -> str:
    users = store.all_stats()
    if not users:
        return "👥 **Users**\n\nNo users yet."

    lines = [f"👥 **Top users** ({len(users)} total)\n"]
    for user_id, stats in users[:ADMIN_USERS_SHOWN]:
        lines.append(f"• `{user_id}` — {stats.download_count} downloads, last seen {_format_time(stats.last_activity)}")
    return "\n".join(lines)


def main_menu_keyboard(is_admin: bool = False) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton("📊 My Statistics", callback_data="my_stats"),
         InlineKeyboardButton("📂 My Files", callback_data="my_files")],
    ]
    if is_admin:
        rows.append([InlineKeyboardButton("🔧 Admin Dashboard", callback_data="admin_dashboard")])
    return InlineKeyboardMarkup(rows)


def back_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("🔙 Main Menu", callback_data="menu")]])


def _button_name(name: str) -> str:
    if len(name) <= BUTTON_NAME_LENGTH:
        return name
    return name[:BUTTON_NAME_LENGTH - 1] + "…"


def files_keyboard(records: List[FileRecord]) -> InlineKeyboardMarkup:
    """One button per recent file, then the history actions"""
    rows = [[InlineKeyboardButton(f"📄 {_button_name(record.name)}", callback_data=f"file_{record.record_id}")]
            for record in records[:FILES_PER_PAGE]]
    if records:
        rows.append([InlineKeyboardButton("🗑️ Clear History", callback_data="clear_files")])
    rows.append([InlineKeyboardButton("🔙 Main Menu", callback_data="menu")])
    return InlineKeyboardMarkup(rows)


def file_keyboard(record: FileRecord) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("📥 Download again", callback_data=f"redownload_{record.record_id}"),
         InlineKeyboardButton("🗑️ Delete", callback_data=f"delete_{record.record_id}")],
        [InlineKeyboardButton("🔙 Back to Files", callback_data="my_files")],
    ])


def admin_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("👥 Users", callback_data="admin_users"),
         InlineKeyboardButton("🔄 Refresh", callback_data="admin_dashboard")],
        [InlineKeyboardButton("🔙 Main Menu", callback_data="menu")],
    ])


def _user_id(message: Message) -> int:
    return message.from_user.id if message.from_user else message.chat.id


class DriveBot:
    """Wires the download pipeline to a pyrogram client"""

    def __init__(self, settings: Settings, store: Optional[BotStore] = None,
                 downloader: Optional[DriveDownloader] = None,
                 janitor: Optional[TempFileJanitor] = None):
        self.settings = settings
        self.store = store or BotStore(settings.admin_user_ids)
        self.downloader = downloader or DriveDownloader.from_settings(settings)
        self.janitor = janitor or TempFileJanitor(settings.temp_dir, settings.cleanup_interval,
                                                  settings.cleanup_max_age)
        self.started_at = time.time()

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def register(self, app: Client) -> None:
        """Attach all handlers to the client"""
        app.on_message(filters.command("start"))(self.start_command)
        app.on_message(filters.command("help"))(self.help_command)
        app.on_message(filters.command("status"))(self.status_command)
        app.on_message(filters.command("stats"))(self.stats_command)
        app.on_message(filters.command("files"))(self.files_command)
        app.on_message(filters.command("info"))(self.info_command)
        app.on_message(filters.command("admin"))(self.admin_command)
        app.on_message(filters.text & ~filters.command(COMMANDS))(self.handle_message)
        app.on_message(filters.private & ~filters.text & ~filters.service)(self.handle_other)
        app.on_callback_query()(self.handle_callback)

    async def start_command(self, client: Client, message: Message):
        """Handle /start command"""
        user_id = _user_id(message)
        self.store.record_message(user_id)
        await message.reply_text(welcome_text(self.settings),
                                 reply_markup=main_menu_keyboard(self.store.is_admin(user_id)))
        logger.info("Start command from chat %s", message.chat.id)

    async def help_command(self, client: Client, message: Message):
        """Handle /help command"""
        self.store.record_message(_user_id(message))
        await message.reply_text(help_text(self.settings), disable_web_page_preview=True)

    async def status_command(self, client: Client, message: Message):
        """Handle /status command"""
        self.store.record_message(_user_id(message))
        await message.reply_text(status_text(self.settings, self.store.totals(), self.uptime))

    async def stats_command(self, client: Client, message: Message):
        """Handle /stats command"""
        user_id = _user_id(message)
        self.store.record_message(user_id)
        await message.reply_text(stats_text(self.store.get_stats(user_id)), reply_markup=back_keyboard())

    async def files_command(self, client: Client, message: Message):
        """Handle /files command"""
        user_id = _user_id(message)
        self.store.record_message(user_id)
        records = self.store.get_files(user_id)
        await message.reply_text(files_text(records), reply_markup=files_keyboard(records))

    async def info_command(self, client: Client, message: Message):
        """Handle /info <link>: show file details without downloading"""
        self.store.record_message(_user_id(message))
        references = find_drive_references(message.text or "")
        if not references:
            await message.reply_text("🔗 Usage: /info <Google Drive link>")
            return

        reference = references[0]
        try:
            probe = await self.downloader.probe(reference.file_id)
        except DownloadError as e:
            logger.warning("Probe of %s failed: %s", short_id(reference.file_id), e.describe())
            await message.reply_text(user_message(e, self.settings.max_file_size_mb,
                                                  self.settings.enable_error_details))
            return

        size = format_size(probe.size) if probe.size is not None else "unknown"
        name = probe.file_name or "unknown (large file behind a confirmation page)"
        verdict = "❌ Too large to relay" if probe.too_large else "✅ Can be relayed"
        await message.reply_text(
            "ℹ️ **File details**\n\n"
            f"📄 Name: {name}\n"
            f"💾 Size: {size}\n"
            f"🏷️ Type: {probe.content_type}\n"
            f"🔗 {normalize_drive_url(reference.url)}\n"
            f"{verdict}"
        )

    async def admin_command(self, client: Client, message: Message):
        """Handle /admin command"""
        user_id = _user_id(message)
        self.store.record_message(user_id)
        if not self.store.is_admin(user_id):
            await message.reply_text("🚫 This command is only available to bot administrators.")
            logger.warning("Unauthorized /admin attempt by %s", user_id)
            return
        await message.reply_text(admin_dashboard_text(self.store.totals(), self.uptime),
                                 reply_markup=admin_keyboard())

    async def handle_callback(self, client: Client, callback_query: CallbackQuery):
        """Inline keyboard navigation"""
        user_id = callback_query.from_user.id
        data = callback_query.data or ""

        if data == "menu":
            text, markup = welcome_text(self.settings), main_menu_keyboard(self.store.is_admin(user_id))
        elif data == "my_stats":
            text, markup = stats_text(self.store.get_stats(user_id)), back_keyboard()
        elif data == "my_files":
            records = self.store.get_files(user_id)
            text, markup = files_text(records), files_keyboard(records)
        elif data.startswith(("file_", "redownload_", "delete_")):
            await self._handle_file_action(client, callback_query, user_id, data)
            return
        elif data == "clear_files":
            removed = self.store.clear_history(user_id)
            await callback_query.answer(f"🗑️ Removed {removed} file(s) from history")
            await self._safe_edit(callback_query.message, files_text([]), back_keyboard())
            return
        elif data in ("admin_dashboard", "admin_users"):
            if not self.store.is_admin(user_id):
                await callback_query.answer("🚫 Admins only", show_alert=True)
                return
            if data == "admin_dashboard":
                text = admin_dashboard_text(self.store.totals(), self.uptime)
            else:
                text = admin_users_text(self.store)
            markup = admin_keyboard()
        else:
            await callback_query.answer("Unknown action")
            return

        await self._safe_edit(callback_query.message, text, markup)
        await callback_query.answer()

    async def _handle_file_action(self, client: Client, callback_query: CallbackQuery, user_id: int, data: str):
        """Details, re-download and delete for one entry of the file history"""
        action, _, record_id = data.partition("_")
        record = self.store.find_file(user_id, record_id)
        if record is None:
            await callback_query.answer("❌ File not found or no longer in your history", show_alert=True)
            return

        if action == "file":
            await self._safe_edit(callback_query.message, file_details_text(record), file_keyboard(record))
            await callback_query.answer()
        elif action == "delete":
            self.store.remove_file_record(user_id, record_id)
            records = self.store.get_files(user_id)
            await callback_query.answer(f"🗑️ {record.name} removed from history")
            await self._safe_edit(callback_query.message, files_text(records), files_keyboard(records))
        else:
            await callback_query.answer("📥 Downloading again...")
            logger.info("Re-download of %s requested by %s", short_id(record.drive_file_id), user_id)
            reference = DriveReference(record.drive_file_id, SourceFormat.STANDARD_VIEW,
                                       sharing_url(record.drive_file_id))
            await self.process_link(client, callback_query.message, reference, user_id=user_id)

    async def handle_message(self, client: Client, message: Message):
        """Find Drive links in a text message and relay each file"""
        if not message.text:
            return

        user_id = _user_id(message)
        self.store.record_message(user_id)

        references = find_drive_references(message.text)
        if not references:
            if message.chat.type == enums.ChatType.PRIVATE:
                await message.reply_text(
                    "🔗 Please send me a valid Google Drive sharing link.\n\n"
                    "Example formats:\n"
                    "• https://drive.google.com/file/d/FILE_ID/view\n"
                    "• https://drive.google.com/open?id=FILE_ID\n\n"
                    "Use /help for more information.",
                    disable_web_page_preview=True
                )
            return

        limit = self.settings.max_links_per_message
        if len(references) > limit:
            await message.reply_text(f"📋 Found {len(references)} links, processing the first {limit}.")

        # One link at a time: each is relayed (or fails) before the next starts
        for reference in references[:limit]:
            await self.process_link(client, message, reference)

    async def handle_other(self, client: Client, message: Message):
        """Handle non-text private messages (photos, stickers, files...)"""
        self.store.record_message(_user_id(message))
        await message.reply_text(
            "📝 I can only process Google Drive links sent as text messages.\n"
            "Please send me a Google Drive sharing link."
        )

    async def process_link(self, client: Client, message: Message, reference: DriveReference,
                           user_id: Optional[int] = None) -> bool:
        """Download, classify and deliver one Drive file. Returns True on success.

        ``user_id`` overrides the message author, for re-downloads started
        from a button under one of the bot's own messages.
        """
        user_id = user_id if user_id is not None else _user_id(message)
        chat_id = message.chat.id
        status_message = await message.reply_text("🔍 **Processing your Google Drive link...**")
        local_path = None

        logger.info("Processing %s link %s for chat %s",
                    reference.source_format.value, short_id(reference.file_id), chat_id)
        try:
            await self._safe_edit(status_message, "📥 **Downloading from Google Drive...**")
            result = await self.downloader.download(reference.file_id)
            if not result.success:
                await self._report_failure(status_message, result.error)
                return False
            local_path = result.local_path

            await self._safe_edit(status_message, "🔍 **Detecting file type...**")
            classification = await asyncio.to_thread(detect_file_type, local_path)
            file_name = result.declared_file_name

            caption = f"📄 {file_name}\n💾 {format_size(result.byte_size)}"
            warnings = security_warnings(file_name, classification)
            if warnings:
                logger.warning("Security warnings for %s: %s", file_name, "; ".join(warnings))
                caption += "\n\n⚠️ " + "\n⚠️ ".join(warnings)

            await self._safe_edit(status_message, "📤 **Uploading to Telegram...**")
            category = await self._send_with_flood_wait(client, chat_id, local_path, file_name,
                                                        classification, caption)

            self.store.add_file(user_id, file_name, result.byte_size, classification.mime_type,
                                reference.file_id)
            self.store.record_download(user_id)

            link = normalize_drive_url(reference.url) or sharing_url(reference.file_id)
            await self._safe_edit(
                status_message,
                f"✅ **Download Complete!**\n\n📄 {file_name}\n💾 Size: {format_size(result.byte_size)}\n"
                f"🏷️ Sent as {category.value}\n🔗 {link}",
                InlineKeyboardMarkup([[InlineKeyboardButton("📂 My Files", callback_data="my_files")]])
            )
            logger.info("Relayed %s (%s, %d bytes) to chat %s",
                        file_name, classification.mime_type, result.byte_size, chat_id)
            return True

        except Exception as e:
            logger.exception("Error processing Google Drive link %s", short_id(reference.file_id))
            await self._report_failure(status_message, e)
            return False
        finally:
            if local_path is not None:
                remove_file(local_path)

    async def _send_with_flood_wait(self, client, chat_id, local_path, file_name, classification, caption):
        try:
            return await send_file(client, chat_id, local_path, file_name, classification, caption)
        except FloodWait as e:
            logger.warning("Flood wait of %ss while sending %s", e.value, file_name)
            await asyncio.sleep(e.value)
            return await send_file(client, chat_id, local_path, file_name, classification, caption)

    async def _report_failure(self, status_message: Message, error: BaseException) -> None:
        text = user_message(error, self.settings.max_file_size_mb, self.settings.enable_error_details)
        await self._safe_edit(status_message, f"❌ **Processing Failed**\n\n{text}",
                              InlineKeyboardMarkup([[InlineKeyboardButton("🆘 Help", callback_data="menu")]]))

    async def _safe_edit(self, message: Message, text: str,
                         reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
        try:
            await message.edit_text(text, reply_markup=reply_markup, disable_web_page_preview=True)
        except MessageNotModified:
            pass
        except RPCError as e:
            logger.warning("Could not edit status message: %s", e)

    def build_client(self) -> Client:
        return Client(
            "google_drive_bot",
            bot_token=self.settings.token,
            api_id=self.settings.api_id,
            api_hash=self.settings.api_hash,
            in_memory=True,
        )

    async def run(self) -> None:
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        await self.janitor.sweep_once()

        app = self.build_client()
        self.register(app)
        self.janitor.start()
        try:
            async with app:
                me = await app.get_me()
                logger.info("Bot @%s is running, press Ctrl+C to stop", me.username)
                await idle()
        finally:
            await self.janitor.stop()
            self.downloader.close()


def main() -> int:
    """Main function to run the bot"""
    try:
        settings = Settings.from_env().validate()
    except ConfigError as e:
        setup_logging()
        logger.error("❌ Configuration error: %s", e)
        return 1

    setup_logging(settings.log_level, settings.log_file)
    logger.info("🤖 Starting Google Drive relay bot with %s", settings.summary())

    bot = DriveBot(settings)
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        logger.info("🛑 Bot stopped by user")
    return 0


if __name__ == '__main__':
    sys.exit(main())
