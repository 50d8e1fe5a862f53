"""Telegram bot front-end for the LP portfolio tracker."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.constants import ParseMode
from telegram.error import BadRequest, Conflict, NetworkError, TelegramError, TimedOut
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from . import crud, reports
from .config import get_settings
from .db import SessionLocal, engine
from .domain.entities import AccountAnalysis, AccountSnapshot, PortfolioSummary, SaveResult, parse_manual_balance
from .extraction import ExtractionAdapter, build_extraction_adapter
from .migrations import init_database
from .models import MAX_SLOT, MIN_SLOT
from .schemas import ExtractionRecord
from .sessions import SessionState, SessionStore

logger = logging.getLogger(__name__)

settings = get_settings()

if not settings.bot_token:
    logger.warning("Telegram bot token is not configured. Bot cannot start without BOT_TOKEN.")

SESSIONS_KEY = "sessions"
ADAPTER_KEY = "extraction_adapter"

MENU_ADD = "📊 Add Account"
MENU_LIST = "👥 List Accounts"
MENU_SUMMARY = "💰 Summary"
MENU_ANALYZE = "📈 Analyze"
MENU_HISTORY = "📅 Update History"
MENU_HELP = "❓ Help"
MENU_DELETE = "⚠️ Delete All Data"
MENU_BACK = "🔙 Main Menu"

TRANSIENT_ERRORS = (TimedOut, NetworkError, Conflict)

SAVE_FAILED_TEXT = "❌ Failed to save the data. Please paste it again later."


def _main_menu_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton(MENU_ADD), KeyboardButton(MENU_LIST)],
            [KeyboardButton(MENU_SUMMARY), KeyboardButton(MENU_ANALYZE)],
            [KeyboardButton(MENU_HISTORY), KeyboardButton(MENU_HELP)],
            [KeyboardButton(MENU_DELETE)],
        ],
        resize_keyboard=True,
    )


def _back_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup([[KeyboardButton(MENU_BACK)]], resize_keyboard=True)


def _slot_keyboard(detected_slot: int | None) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(f"✅ {slot}" if slot == detected_slot else str(slot), callback_data=f"save:{slot}")
        for slot in range(MIN_SLOT, MAX_SLOT + 1)
    ]
    rows = [buttons[i:i + 5] for i in range(0, len(buttons), 5)]
    if detected_slot:
        rows.append(
            [InlineKeyboardButton(f"💾 Save to Account {detected_slot}", callback_data="save:detected")]
        )
    rows.append([InlineKeyboardButton("❌ Cancel", callback_data="input:cancel")])
    return InlineKeyboardMarkup(rows)


def _accounts_keyboard(accounts: list[AccountSnapshot], prefix: str = "") -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(f"{prefix}{account.display_name}", callback_data=f"analyze:{account.id}")
        for account in accounts
    ]
    return InlineKeyboardMarkup([buttons[i:i + 2] for i in range(0, len(buttons), 2)])


def _delete_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("🔥 YES, DELETE EVERYTHING", callback_data="delete:confirm")],
            [InlineKeyboardButton("❌ Cancel", callback_data="delete:cancel")],
        ]
    )


def _get_sessions(context: ContextTypes.DEFAULT_TYPE) -> SessionStore:
    sessions = context.bot_data.get(SESSIONS_KEY)
    if sessions is None:
        sessions = SessionStore(settings.session_ttl_seconds)
        context.bot_data[SESSIONS_KEY] = sessions
    return sessions


def _get_adapter(context: ContextTypes.DEFAULT_TYPE) -> ExtractionAdapter:
    adapter = context.bot_data.get(ADAPTER_KEY)
    if adapter is None:
        adapter = build_extraction_adapter()
        context.bot_data[ADAPTER_KEY] = adapter
    return adapter


def _now() -> datetime:
    return datetime.now(ZoneInfo(settings.timezone))


def _store_account(owner_id: int, slot: int, record: ExtractionRecord) -> SaveResult:
    with SessionLocal() as db:
        return crud.save_account(db, owner_id, slot, record)


def _load_accounts(owner_id: int) -> list[AccountSnapshot]:
    with SessionLocal() as db:
        return [crud.build_account_snapshot(account) for account in crud.list_accounts(db, owner_id)]


def _load_summary(owner_id: int) -> PortfolioSummary:
    with SessionLocal() as db:
        return crud.summarize_accounts(db, owner_id)


def _load_analysis(owner_id: int, account_id: int) -> AccountAnalysis | None:
    with SessionLocal() as db:
        account = crud.get_account(db, account_id, owner_id)
        if account is None:
            return None
        previous = crud.get_previous_snapshot(db, account.id, crud.current_day())
        positions = crud.list_positions(db, account.id)
        return AccountAnalysis(
            account=crud.build_account_snapshot(account),
            previous=crud.build_history_snapshot(previous),
            positions=crud.build_position_snapshots(positions),
        )


def _delete_all(owner_id: int) -> int:
    with SessionLocal() as db:
        return crud.delete_all_for_owner(db, owner_id)


def _prepare_record_for_slot(record: ExtractionRecord, slot: int) -> ExtractionRecord:
    """Drop a detected account name when the user saves into a different slot."""
    if record.account_number is not None and record.account_number != slot and record.account_name:
        return record.model_copy(update={"account_name": None})
    return record


async def _safe_edit(query: Any, text: str, **kwargs: Any) -> Any:
    try:
        return await query.edit_message_text(text, **kwargs)
    except TimedOut:
        logger.warning("Message edit timed out, answering callback instead.")
        try:
            await query.answer("⏳ Update in progress...")
        except TelegramError as exc:
            logger.debug("Callback answer failed: %s", exc)
        return None
    except BadRequest as exc:
        logger.warning("Message could not be edited (already deleted or unchanged): %s", exc)
        return None


async def _save_pending(
    context: ContextTypes.DEFAULT_TYPE,
    chat_id: int,
    owner_id: int,
    slot: int,
    record: ExtractionRecord,
) -> str:
    """Persist a confirmed record and end the session whatever the outcome."""
    sessions = _get_sessions(context)
    try:
        result = await asyncio.to_thread(_store_account, owner_id, slot, record)
    except SQLAlchemyError:
        sessions.clear(chat_id)
        return SAVE_FAILED_TEXT
    sessions.clear(chat_id)
    return reports.render_saved(result)


async def _extract_and_preview(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    *,
    text: str | None = None,
    image_bytes: bytes | None = None,
    caption: str | None = None,
) -> None:
    chat_id = update.effective_chat.id
    sessions = _get_sessions(context)
    adapter = _get_adapter(context)

    wait_msg = await update.message.reply_text("⏳ Analyzing your data with AI...")
    if image_bytes is not None:
        record = await asyncio.to_thread(adapter.extract_image, image_bytes, caption)
    else:
        record = await asyncio.to_thread(adapter.extract_text, text or "")
    try:
        await wait_msg.delete()
    except TelegramError as exc:
        logger.debug("Could not delete progress message: %s", exc)

    if record is None or record.is_empty():
        sessions.begin_input(chat_id)
        await update.message.reply_text(
            "⚠️ Sorry, I couldn't recognise that data. Paste the dashboard text again "
            "or send a clearer screenshot.",
            reply_markup=_back_keyboard(),
        )
        return

    detected_slot = record.account_number
    sessions.start_preview(chat_id, record, detected_slot)
    await update.message.reply_text(
        reports.render_preview(record, detected_slot),
        parse_mode=ParseMode.HTML,
        reply_markup=_slot_keyboard(detected_slot),
    )


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    logger.info("User started: %s (%s)", user.id if user else None, user.username if user else None)
    await update.message.reply_text(
        reports.START_TEXT,
        parse_mode=ParseMode.HTML,
        reply_markup=_main_menu_keyboard(),
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(reports.HELP_TEXT, parse_mode=ParseMode.HTML)


async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(reports.HISTORY_TEXT, parse_mode=ParseMode.HTML)


async def add_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    _get_sessions(context).begin_input(update.effective_chat.id)
    await update.message.reply_text(reports.INPUT_PROMPT_TEXT, reply_markup=_back_keyboard())


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    _get_sessions(context).clear(update.effective_chat.id)
    await update.message.reply_text("🏠 Main Menu", reply_markup=_main_menu_keyboard())


async def summary_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        summary = await asyncio.to_thread(_load_summary, update.effective_user.id)
    except SQLAlchemyError as exc:
        logger.error("Failed to load summary: %s", exc)
        await update.message.reply_text("❌ Could not load the summary.", reply_markup=_main_menu_keyboard())
        return
    await update.message.reply_text(
        reports.render_summary(summary),
        parse_mode=ParseMode.HTML,
        reply_markup=_main_menu_keyboard(),
    )


async def accounts_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        accounts = await asyncio.to_thread(_load_accounts, update.effective_user.id)
    except SQLAlchemyError as exc:
        logger.error("Failed to list accounts: %s", exc)
        await update.message.reply_text("❌ Could not load your accounts.", reply_markup=_main_menu_keyboard())
        return
    if not accounts:
        await update.message.reply_text(reports.EMPTY_ACCOUNTS_TEXT, reply_markup=_main_menu_keyboard())
        return
    await update.message.reply_text(
        reports.render_account_list(accounts),
        parse_mode=ParseMode.HTML,
        reply_markup=_accounts_keyboard(accounts),
    )


async def analyze_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    owner_id = update.effective_user.id
    try:
        accounts = await asyncio.to_thread(_load_accounts, owner_id)
        analysis = None
        if len(accounts) == 1:
            analysis = await asyncio.to_thread(_load_analysis, owner_id, accounts[0].id)
    except SQLAlchemyError as exc:
        logger.error("Failed to load accounts for analysis: %s", exc)
        await update.message.reply_text("❌ Could not load your accounts.", reply_markup=_main_menu_keyboard())
        return

    if not accounts:
        await update.message.reply_text(reports.EMPTY_ACCOUNTS_TEXT, reply_markup=_main_menu_keyboard())
        return
    if analysis is not None:
        await update.message.reply_text(
            reports.render_analysis(analysis, _now(), settings.claim_threshold, settings.timezone_label),
            parse_mode=ParseMode.HTML,
        )
        return
    await update.message.reply_text(
        f"📈 <b>ACCOUNT ANALYSIS</b>\n{reports.DIVIDER}\n\nPick an account for a detailed analysis:",
        parse_mode=ParseMode.HTML,
        reply_markup=_accounts_keyboard(accounts, prefix="📊 "),
    )


async def reset_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        reports.DELETE_CONFIRM_TEXT,
        parse_mode=ParseMode.HTML,
        reply_markup=_delete_keyboard(),
    )


MENU_ACTIONS: dict[str, Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]] = {
    MENU_ADD: add_command,
    MENU_LIST: accounts_command,
    MENU_SUMMARY: summary_command,
    MENU_ANALYZE: analyze_command,
    MENU_HISTORY: history_command,
    MENU_HELP: help_command,
    MENU_DELETE: reset_command,
    MENU_BACK: cancel_command,
}


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    text = update.message.text or ""
    action = MENU_ACTIONS.get(text.strip())
    if action is not None:
        await action(update, context)
        return

    chat_id = update.effective_chat.id
    sessions = _get_sessions(context)
    session = sessions.get(chat_id)

    if session.state is SessionState.AWAITING_MANUAL_BALANCE and session.pending is not None:
        balance = parse_manual_balance(text)
        if balance is None:
            await update.message.reply_text("⚠️ Enter a valid number for the balance (e.g. 500).")
            return
        slot = session.slot
        message = await _save_pending(
            context, chat_id, update.effective_user.id, slot, session.pending.with_balance(balance)
        )
        await update.message.reply_text(message, parse_mode=ParseMode.HTML, reply_markup=_main_menu_keyboard())
        return

    if session.state in (SessionState.AWAITING_PORTFOLIO_TEXT, SessionState.PREVIEWING):
        await context.bot.send_chat_action(chat_id=chat_id, action="typing")
        await _extract_and_preview(update, context, text=text)


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _get_sessions(context).get(update.effective_chat.id)
    if session.state not in (SessionState.AWAITING_PORTFOLIO_TEXT, SessionState.PREVIEWING):
        await update.message.reply_text(
            f"Tap {MENU_ADD} first, then send the dashboard screenshot.",
            reply_markup=_main_menu_keyboard(),
        )
        return

    photo = update.message.photo[-1]
    file = await context.bot.get_file(photo.file_id)
    image_bytes = bytes(await file.download_as_bytearray())
    await _extract_and_preview(update, context, image_bytes=image_bytes, caption=update.message.caption)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    data = query.data or ""
    owner_id = query.from_user.id
    chat_id = update.effective_chat.id
    sessions = _get_sessions(context)

    if data.startswith("save:"):
        session = sessions.get(chat_id)
        if session.state is not SessionState.PREVIEWING or session.pending is None:
            await _safe_edit(query, "⌛ This preview has expired. Paste your data again.")
            return
        choice = data.split(":", 1)[1]
        if choice == "detected":
            slot = session.detected_slot
        else:
            slot = int(choice) if choice.isdigit() else None
        if slot is None or not MIN_SLOT <= slot <= MAX_SLOT:
            await _safe_edit(query, "Unsupported account number.")
            return

        record = _prepare_record_for_slot(session.pending, slot)
        if record.balance is None:
            session.pending = record
            sessions.await_manual_balance(chat_id, slot)
            await _safe_edit(
                query,
                f"⚠️ Balance not detected. Enter the balance for Account {slot} manually "
                "(numbers only, e.g. 500.50):",
            )
            return

        message = await _save_pending(context, chat_id, owner_id, slot, record)
        await _safe_edit(query, message, parse_mode=ParseMode.HTML)
    elif data == "input:cancel":
        sessions.clear(chat_id)
        await _safe_edit(query, "❌ Cancelled.")
    elif data.startswith("analyze:"):
        raw_id = data.split(":", 1)[1]
        if not raw_id.isdigit():
            await _safe_edit(query, "Account not found.")
            return
        try:
            analysis = await asyncio.to_thread(_load_analysis, owner_id, int(raw_id))
        except SQLAlchemyError as exc:
            logger.error("Failed to analyse account %s: %s", raw_id, exc)
            await _safe_edit(query, "❌ Could not analyse this account.")
            return
        if analysis is None:
            await _safe_edit(query, "Account not found.")
            return
        await _safe_edit(
            query,
            reports.render_analysis(analysis, _now(), settings.claim_threshold, settings.timezone_label),
            parse_mode=ParseMode.HTML,
        )
    elif data == "delete:confirm":
        try:
            deleted = await asyncio.to_thread(_delete_all, owner_id)
        except SQLAlchemyError:
            await _safe_edit(query, "❌ Failed to delete your data.")
            return
        sessions.clear(chat_id)
        await _safe_edit(
            query,
            f"✅ <b>Deleted {deleted} account{'s' if deleted != 1 else ''} with all positions and history.</b>",
            parse_mode=ParseMode.HTML,
        )
    elif data == "delete:cancel":
        await _safe_edit(query, "❌ Deletion cancelled.")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    error = context.error
    if isinstance(error, TRANSIENT_ERRORS):
        logger.warning("Transient Telegram error, bot keeps polling: %s", error)
        return
    logger.error("Exception while handling an update: %s", error, exc_info=error)
    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text("❌ Something went wrong, please try again.")
        except TelegramError as exc:
            logger.warning("Could not report error to user: %s", exc)


def build_application() -> Application:
    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is missing from configuration.")

    application = ApplicationBuilder().token(settings.bot_token).build()
    application.bot_data[SESSIONS_KEY] = SessionStore(settings.session_ttl_seconds)
    application.bot_data[ADAPTER_KEY] = build_extraction_adapter()

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("add", add_command))
    application.add_handler(CommandHandler("accounts", accounts_command))
    application.add_handler(CommandHandler("summary", summary_command))
    application.add_handler(CommandHandler("analyze", analyze_command))
    application.add_handler(CommandHandler("history", history_command))
    application.add_handler(CommandHandler("reset", reset_command))
    application.add_handler(CommandHandler("cancel", cancel_command))
    application.add_handler(CallbackQueryHandler(handle_callback))
    application.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    application.add_error_handler(error_handler)
    return application


def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.bot_token:
        raise SystemExit("Please set BOT_TOKEN in the environment to run the bot.")
    init_database(engine)
    application = build_application()
    logger.info("Starting Telegram bot...")
    application.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
