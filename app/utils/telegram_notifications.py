# app/utils/telegram_notifications.py
import html
import logging
import re
from typing import Optional

from telegram import Bot

logger = logging.getLogger(__name__)


def strip_html_tags(text: str) -> str:
    clean = re.sub("<[^<]+?>", "", text)
    return re.sub(r"\s+", " ", clean).strip()


class TelegramNotifier:
    """Уведомления о сделках в Telegram; без BOT_TOKEN/TG_CHAT_ID ничего не отправляет"""

    def __init__(self, bot_token: Optional[str], chat_id: Optional[str], bot: Optional[Bot] = None):
        self.chat_id = chat_id
        self.enabled = bool(bot_token and chat_id)
        self.bot = bot if bot is not None else (Bot(token=bot_token) if self.enabled else None)

    async def notify(self, message: str) -> bool:
        if not self.enabled:
            logger.debug("Telegram credentials not configured, skipping notification")
            return False
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=html.escape(message), parse_mode="HTML")
            logger.info(f"Telegram message sent to {self.chat_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to send telegram message: {e}")
        # повторная попытка обычным текстом
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=strip_html_tags(message))
            logger.info(f"Fallback plain message sent to {self.chat_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to send fallback message: {e}")
            return False
