"""Telegram channel adapter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger
from telegram import Bot, Update
from telegram.error import BadRequest
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters
from telegramify_markdown import markdownify as md

from chatter.core.assistant import ChatAssistant, Reply
from chatter.interfaces import MessageRef
from chatter.workflow.summary import DocumentSummaryWorkflow

MAX_MESSAGE_LENGTH = 4000
FINAL_HEADER = "**Specification ready**"
INSTRUCTION_NOTICE = "Preparing the instruction for the final specification..."
HELP_TEXT = (
    "Commands:\n"
    "/start - show startup message\n"
    "/help - show this help\n"
    "/tz <topic> - assemble a technical specification in a guided dialogue\n"
    "/summary - summarize the conversation and compact the context\n"
    "/reset - forget the conversation context\n"
    "/digest <request> - summarize documents for a request and publish the result\n\n"
    "All plain text is routed to the assistant."
)


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram adapter config."""

    token: str
    allow_from: set[str]


class TelegramTransport:
    """Sends and edits messages through the bot API with markdown rendering."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, user_id: int, text: str) -> MessageRef:
        rendered = md(text)
        if len(rendered.encode("utf-8")) > MAX_MESSAGE_LENGTH:
            # Use expandable blockquote for long messages
            kwargs: dict[str, Any] = {"text": f"<blockquote expandable>{rendered}</blockquote>", "parse_mode": "HTML"}
        else:
            kwargs = {"text": rendered, "parse_mode": "MarkdownV2"}
        try:
            message = await self._bot.send_message(chat_id=user_id, **kwargs)
        except BadRequest as exc:
            logger.warning("telegram.send.markup_rejected chat_id={} error={}", user_id, exc)
            message = await self._bot.send_message(chat_id=user_id, text=text, parse_mode=None)
        return MessageRef(chat_id=user_id, message_id=message.message_id)

    async def edit(self, ref: MessageRef, text: str) -> None:
        try:
            await self._bot.edit_message_text(
                chat_id=ref.chat_id,
                message_id=ref.message_id,
                text=md(text),
                parse_mode="MarkdownV2",
            )
        except BadRequest as exc:
            if "not modified" in str(exc).lower():
                return
            logger.warning("telegram.edit.markup_rejected chat_id={} error={}", ref.chat_id, exc)
            await self._bot.edit_message_text(chat_id=ref.chat_id, message_id=ref.message_id, text=text)


class TelegramChannel:
    """Telegram adapter using long polling mode."""

    name = "telegram"

    def __init__(
        self,
        assistant: ChatAssistant,
        config: TelegramConfig,
        *,
        summary: DocumentSummaryWorkflow | None = None,
    ) -> None:
        self._assistant = assistant
        self._config = config
        self._summary = summary
        self._app: Application | None = None
        self._transport: TelegramTransport | None = None
        self._running = False
        self._typing_tasks: dict[int, asyncio.Task[None]] = {}

    async def start(self) -> None:
        if not self._config.token:
            raise RuntimeError("telegram token is empty")
        logger.info("telegram.channel.start allow_from_count={}", len(self._config.allow_from))
        self._running = True
        self._app = Application.builder().token(self._config.token).build()
        self._transport = TelegramTransport(self._app.bot)
        self._app.add_handler(CommandHandler("start", self._on_start))
        self._app.add_handler(CommandHandler("help", self._on_help))
        self._app.add_handler(CommandHandler("tz", self._on_tz, block=False))
        self._app.add_handler(CommandHandler("summary", self._on_summary, block=False))
        self._app.add_handler(CommandHandler("reset", self._on_reset, block=False))
        self._app.add_handler(CommandHandler("digest", self._on_digest, block=False))
        self._app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_text, block=False))
        await self._app.initialize()
        await self._app.start()
        updater = self._app.updater
        if updater is None:
            return
        await updater.start_polling(drop_pending_updates=True, allowed_updates=["message"])
        logger.info("telegram.channel.polling")
        while self._running:
            await asyncio.sleep(0.5)

    async def stop(self) -> None:
        self._running = False
        for task in self._typing_tasks.values():
            task.cancel()
        self._typing_tasks.clear()
        if self._app is None:
            return
        updater = self._app.updater
        if updater is not None:
            await updater.stop()
        await self._app.stop()
        await self._app.shutdown()
        self._app = None
        logger.info("telegram.channel.stopped")

    @property
    def transport(self) -> TelegramTransport:
        if self._transport is None:
            if self._app is None:
                raise RuntimeError("telegram channel is not started")
            self._transport = TelegramTransport(self._app.bot)
        return self._transport

    async def deliver(self, chat_id: int, reply: Reply) -> None:
        body = reply.render()
        if reply.final:
            body = f"{FINAL_HEADER}\n\n{body}"
        meta = reply.meta_line()
        if meta:
            body = f"{meta}\n\n{body}"
        await self.transport.send(chat_id, body)
        if reply.final and reply.followups:
            await self.transport.send(chat_id, INSTRUCTION_NOTICE)
        for followup in reply.followups:
            await self.transport.send(chat_id, followup)

    async def _on_start(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        await update.message.reply_text("Chatter is online. Send text to start, /help lists the commands.")

    async def _on_help(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        await update.message.reply_text(HELP_TEXT)

    async def _on_text(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._accept(update)
        if user_id is None:
            return
        text = update.message.text or ""
        logger.info("telegram.channel.inbound user_id={} content={}", user_id, text[:100])
        chat_id = update.message.chat_id
        self._start_typing(chat_id)
        try:
            reply = await self._assistant.handle_message(user_id, text)
        finally:
            self._stop_typing(chat_id)
        await self.deliver(chat_id, reply)

    async def _on_tz(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._accept(update)
        if user_id is None:
            return
        topic = " ".join(context.args or []).strip()
        if not topic:
            await update.message.reply_text("Usage: /tz <topic>")
            return
        chat_id = update.message.chat_id
        self._start_typing(chat_id)
        try:
            reply = await self._assistant.start_elicitation(user_id, topic)
        finally:
            self._stop_typing(chat_id)
        await self.deliver(chat_id, reply)

    async def _on_summary(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._accept(update)
        if user_id is None:
            return
        chat_id = update.message.chat_id
        self._start_typing(chat_id)
        try:
            reply = await self._assistant.summarize(user_id)
        finally:
            self._stop_typing(chat_id)
        await self.deliver(chat_id, reply)

    async def _on_reset(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._accept(update)
        if user_id is None:
            return
        await self._assistant.reset_context(user_id)
        await update.message.reply_text("Context cleared.")

    async def _on_digest(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._accept(update)
        if user_id is None:
            return
        if self._summary is None:
            await update.message.reply_text("Document summaries are not configured.")
            return
        request = " ".join(context.args or []).strip()
        if not request:
            await update.message.reply_text("Usage: /digest <request>\n\nExample: /digest what important did I miss today")
            return
        await self._summary.start(update.message.chat_id, request, self.transport)

    async def _accept(self, update: Update) -> int | None:
        if update.message is None or update.effective_user is None:
            return None
        user = update.effective_user
        sender_tokens = {str(user.id)}
        if user.username:
            sender_tokens.add(user.username)
        if self._config.allow_from and sender_tokens.isdisjoint(self._config.allow_from):
            await update.message.reply_text("Access denied.")
            return None
        return user.id

    def _start_typing(self, chat_id: int) -> None:
        self._stop_typing(chat_id)
        self._typing_tasks[chat_id] = asyncio.create_task(self._typing_loop(chat_id))

    def _stop_typing(self, chat_id: int) -> None:
        task = self._typing_tasks.pop(chat_id, None)
        if task is not None:
            task.cancel()

    async def _typing_loop(self, chat_id: int) -> None:
        try:
            while self._app is not None:
                await self._app.bot.send_chat_action(chat_id=chat_id, action="typing")
                await asyncio.sleep(4)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("telegram.channel.typing_loop.error chat_id={}", chat_id)
            return
