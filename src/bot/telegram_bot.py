"""
Duty Reminder — Telegram Bot.

Telegram is the only user interface. The bot lives in group chats: adding
it to a group creates a household, members join the rotation with
/register, and /setschedule changes when the group is reminded.

Handlers here only translate chat activity into storage changes and
EventBus events; the timer table and the rotation are owned by
src.core.scheduler and src.core.duty_service.
"""

from __future__ import annotations

import logging
import sys
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import ChatMember, Update
from telegram.constants import ChatMemberStatus, ChatType, ParseMode
from telegram.ext import (
    Application,
    ApplicationBuilder,
    ChatMemberHandler,
    CommandHandler,
    ContextTypes,
    Defaults,
)

from src.config import settings
from src.core.crontab import InvalidCrontab, validate_crontab
from src.core.events import HouseholdCreated, HouseholdCrontabUpdated, HouseholdDeleted
from src.data.db import StoreError, StoreUnavailable
from src.data.models import Household, Member

if TYPE_CHECKING:
    from src.core.event_bus import EventBus
    from src.data.db import HouseholdDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_GROUP_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)
_PRESENT = (ChatMemberStatus.MEMBER, ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER)

_STORE_ERROR_TEXT = "Something went wrong while saving. Please try again later."
_NOT_SET_UP_TEXT = (
    "This group isn't set up yet. Remove me from the group and add me again."
)


# ---------------------------------------------------------------------------
# Guard: group chats only
# ---------------------------------------------------------------------------


def groups_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that answers private chats with a refusal."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        if chat is None or chat.type not in _GROUP_TYPES:
            if update.effective_message is not None:
                await update.effective_message.reply_text("🛑 Sorry, I only work in groups")
            return
        return await func(update, context)

    return wrapper


def _db(context: ContextTypes.DEFAULT_TYPE) -> HouseholdDB:
    return context.bot_data["db"]


def _bus(context: ContextTypes.DEFAULT_TYPE) -> EventBus:
    return context.bot_data["bus"]


def _notifier(context: ContextTypes.DEFAULT_TYPE) -> NotificationPort:
    return context.bot_data["notifier"]


# ---------------------------------------------------------------------------
# Household lifecycle: bot added to / removed from a group
# ---------------------------------------------------------------------------


async def handle_my_chat_member(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """React to the bot's own membership changing in a group."""
    change = update.my_chat_member
    if change is None or change.chat.type not in _GROUP_TYPES:
        return

    was_present = _is_present(change.old_chat_member)
    is_present = _is_present(change.new_chat_member)

    if is_present and not was_present:
        await _on_bot_added(change.chat.id, context)
    elif was_present and not is_present:
        await _on_bot_removed(change.chat.id, context)


def _is_present(member: ChatMember) -> bool:
    """A restricted bot is still in the group while `is_member` is set."""
    if member.status == ChatMemberStatus.RESTRICTED:
        return getattr(member, "is_member", False) is True
    return member.status in _PRESENT


async def _on_bot_added(chat_id: int, context: ContextTypes.DEFAULT_TYPE) -> None:
    household: Household | None = None
    try:
        async with _db(context).transaction() as repo:
            if repo.get_household(chat_id) is None:
                household = Household(telegram_id=chat_id, crontab=settings.DEFAULT_CRONTAB)
                repo.create_household(household)
    except StoreError as exc:
        logger.error("Failed to create household %d: %s", chat_id, exc)
        return

    if household is None:
        logger.info("Household %d already exists; keeping its state", chat_id)
        return

    logger.info("Household %d created", chat_id)
    _bus(context).publish(
        HouseholdCreated(household_id=chat_id, crontab=household.crontab)
    )
    await _notifier(context).send_message(
        chat_id,
        (
            "Hey! Group chat was successfully added. 🏠\n"
            f"Your current schedule is `{household.crontab}` 🗓️\n"
            "To register as a member, please use /register"
        ),
        parse_mode=ParseMode.MARKDOWN,
    )


async def _on_bot_removed(chat_id: int, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        async with _db(context).transaction() as repo:
            deleted = repo.delete_household(chat_id)
    except StoreError as exc:
        logger.error("Failed to delete household %d: %s", chat_id, exc)
        return

    logger.info("Household %d removed (existed: %s)", chat_id, deleted)
    _bus(context).publish(HouseholdDeleted(household_id=chat_id))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Duty Reminder*!\n\n"
        "Add me to a group chat and I'll remind the group whose turn it is:\n"
        "• /register to join the rotation\n"
        "• /setschedule to change when I remind you\n\n"
        "Type /help for the full command list.",
        parse_mode=ParseMode.MARKDOWN,
    )


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/register — Join this household's rotation\n"
        "/leave — Leave the rotation\n"
        "/members — Show the rotation order\n"
        "/schedule — Show the current schedule\n"
        "/setschedule <cron> — Change the schedule, e.g. `/setschedule 0 9 * * 5`\n"
        "/help — Show this message",
        parse_mode=ParseMode.MARKDOWN,
    )


@groups_only
async def cmd_register(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /register — append the sender to the rotation."""
    user = update.effective_user
    chat_id = update.effective_chat.id

    try:
        async with _db(context).transaction() as repo:
            household = repo.get_household(chat_id)
            if household is None:
                outcome = "missing"
            elif household.find_member(user.id) is not None:
                outcome = "exists"
            else:
                household.add_member(Member(telegram_id=user.id, name=user.full_name))
                repo.save_household(household)
                outcome = "added"
    except StoreError as exc:
        logger.error("Failed to register %d in household %d: %s", user.id, chat_id, exc)
        await update.message.reply_text(_STORE_ERROR_TEXT)
        return

    if outcome == "missing":
        await update.message.reply_text(_NOT_SET_UP_TEXT)
    elif outcome == "exists":
        await update.message.reply_text(
            "👌 You are already a member of this household", do_quote=True,
        )
    else:
        logger.info("Member %d joined household %d", user.id, chat_id)
        await update.message.reply_text("✅ You're in the household now", do_quote=True)


@groups_only
async def cmd_leave(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /leave — remove the sender from the rotation."""
    user = update.effective_user
    chat_id = update.effective_chat.id

    try:
        async with _db(context).transaction() as repo:
            household = repo.get_household(chat_id)
            removed = None
            if household is not None:
                removed = household.remove_member(user.id)
                if removed is not None:
                    repo.save_household(household)
    except StoreError as exc:
        logger.error("Failed to remove %d from household %d: %s", user.id, chat_id, exc)
        await update.message.reply_text(_STORE_ERROR_TEXT)
        return

    if household is None:
        await update.message.reply_text(_NOT_SET_UP_TEXT)
    elif removed is None:
        await update.message.reply_text(
            "You are not a member of this household", do_quote=True,
        )
    else:
        logger.info("Member %d left household %d", user.id, chat_id)
        await update.message.reply_text("👋 You've left the rotation", do_quote=True)


@groups_only
async def cmd_setschedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setschedule <minute hour day month weekday>."""
    chat_id = update.effective_chat.id

    if not context.args:
        await update.message.reply_text(
            "⚠️ You didn't provide any arguments.\n"
            "Correct usage: `/setschedule 0 9 * * 5`",
            parse_mode=ParseMode.MARKDOWN,
        )
        return

    raw = " ".join(context.args)
    logger.debug("New crontab for %d: %r", chat_id, raw)
    try:
        crontab = validate_crontab(raw)
    except InvalidCrontab as exc:
        logger.info("Rejected schedule %r for %d: %s", raw, chat_id, exc)
        await update.message.reply_text(
            "⚠️ The schedule you've provided is invalid.\n"
            "Correct example: `0 9 * * 5` (minute hour day month weekday)",
            parse_mode=ParseMode.MARKDOWN,
        )
        return

    try:
        async with _db(context).transaction() as repo:
            household = repo.get_household(chat_id)
            if household is not None:
                household.crontab = crontab
                repo.save_household(household)
    except StoreError as exc:
        logger.error("Failed to update schedule of household %d: %s", chat_id, exc)
        await update.message.reply_text(_STORE_ERROR_TEXT)
        return

    if household is None:
        await update.message.reply_text(_NOT_SET_UP_TEXT)
        return

    _bus(context).publish(HouseholdCrontabUpdated(household_id=chat_id, crontab=crontab))
    await update.message.reply_text(
        "✅ Your household's schedule has been updated successfully"
    )


@groups_only
async def cmd_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule — show the current cron expression."""
    try:
        household = _db(context).get_household(update.effective_chat.id)
    except StoreError as exc:
        logger.error("Failed to load household: %s", exc)
        await update.message.reply_text(_STORE_ERROR_TEXT)
        return

    if household is None:
        await update.message.reply_text(_NOT_SET_UP_TEXT)
        return

    await update.message.reply_text(
        f"🗓️ Current schedule: `{household.crontab}`", parse_mode=ParseMode.MARKDOWN,
    )


@groups_only
async def cmd_members(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /members — list the rotation, marking who is up next."""
    try:
        household = _db(context).get_household(update.effective_chat.id)
    except StoreError as exc:
        logger.error("Failed to load household: %s", exc)
        await update.message.reply_text(_STORE_ERROR_TEXT)
        return

    if household is None:
        await update.message.reply_text(_NOT_SET_UP_TEXT)
        return

    if not household.members:
        await update.message.reply_text("Nobody is registered yet. Use /register to join.")
        return

    lines = ["Rotation order:"]
    for i, m in enumerate(household.members):
        marker = "➡️" if i == household.current_member else "  "
        lines.append(f"{marker} {i + 1}. {m.name}")
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    db: HouseholdDB | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build the Telegram Application and wire the scheduling core.

    Args:
        db: Household storage. Defaults to HouseholdDB at DATABASE_PATH.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).

    Raises:
        StoreUnavailable: stored schedules could not be read.
    """
    from src.core.duty_service import DutyService
    from src.core.event_bus import EventBus
    from src.core.scheduler import NotificationScheduler

    tz = ZoneInfo(settings.TIMEZONE)
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .defaults(Defaults(tzinfo=tz))
        .post_shutdown(_drain_event_bus)
        .build()
    )

    # Wire default adapters if not provided
    if db is None:
        from src.data.db import HouseholdDB
        db = HouseholdDB()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    bus = EventBus()
    duty_service = DutyService(bus, db, notifier)
    scheduler = NotificationScheduler(bus, db, app.job_queue, timezone=tz)

    app.bot_data["db"] = db
    app.bot_data["bus"] = bus
    app.bot_data["notifier"] = notifier
    app.bot_data["duty_service"] = duty_service
    app.bot_data["scheduler"] = scheduler

    app.add_handler(ChatMemberHandler(handle_my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER))

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("register", cmd_register))
    app.add_handler(CommandHandler("leave", cmd_leave))
    app.add_handler(CommandHandler("setschedule", cmd_setschedule))
    app.add_handler(CommandHandler("schedule", cmd_schedule))
    app.add_handler(CommandHandler("members", cmd_members))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def webhook_url_path(secret: str) -> str:
    """Path Telegram posts updates to: `telegram` or `telegram/<secret>`."""
    return f"telegram/{secret}" if secret else "telegram"


async def _drain_event_bus(app: Application) -> None:
    """Let in-flight rotations finish before the process exits."""
    bus = app.bot_data.get("bus")
    if bus is not None:
        await bus.join()


def main() -> None:
    """Entry point: build the app and start polling or the webhook server."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # main.py may have configured logging first
    logging.getLogger().setLevel(settings.LOG_LEVEL)
    # one INFO line per getUpdates poll otherwise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.info("Starting Duty Reminder bot...")

    try:
        app = build_app()
    except StoreUnavailable as exc:
        logger.error("Cannot start without household schedules: %s", exc)
        sys.exit(1)

    if settings.WEBHOOK_URL:
        url_path = webhook_url_path(settings.WEBHOOK_SECRET)
        logger.info("Serving webhook on %s:%d", settings.WEBHOOK_LISTEN, settings.WEBHOOK_PORT)
        app.run_webhook(
            listen=settings.WEBHOOK_LISTEN,
            port=settings.WEBHOOK_PORT,
            url_path=url_path,
            webhook_url=f"{settings.WEBHOOK_URL.rstrip('/')}/{url_path}",
            secret_token=settings.WEBHOOK_SECRET or None,
            allowed_updates=Update.ALL_TYPES,
        )
    else:
        app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
