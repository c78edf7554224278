"""
Progress and outcome notifications.

Every message is written to the `backupctl.notify` log stream with a
timestamp prefix, then delivered to Telegram when a bot token and chat id are
configured and the message is meant for the chat. Delivery is best-effort:
notify() never raises.
"""

import logging
import time

import requests


logger = logging.getLogger(__name__)

# Dedicated stream mirroring every notification, independent of the app log level
message_log = logging.getLogger('backupctl.notify.messages')

TELEGRAM_API_URL = 'https://api.telegram.org/bot{token}/sendMessage'


def configure_message_log(log_file: str = None):
    """
    Attach handlers to the notification stream.

    Messages go to stderr and, when log_file is set, are appended to that file.
    """
    formatter = logging.Formatter('[%(asctime)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

    for handler in list(message_log.handlers):
        message_log.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    message_log.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setFormatter(formatter)
        message_log.addHandler(file_handler)

    message_log.setLevel(logging.INFO)
    message_log.propagate = False


class Notifier:
    """
    Log-only notifier, used when no chat transport is configured.
    """

    def notify(self, text: str, chat: bool = True):
        """
        Record a message.

        Args:
            text: Message text
            chat: False keeps the message in the log stream only
        """
        message_log.info(text)

    __call__ = notify


class TelegramNotifier(Notifier):
    """
    Sends notifications to a Telegram chat via the Bot API.
    """

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10, retries: int = 2,
                 session: requests.Session = None, retry_delay: float = 1.0):
        """
        Initialize Telegram notifier.

        Args:
            bot_token: Telegram bot token
            chat_id: Target chat id
            timeout: Per-request timeout in seconds
            retries: Additional attempts after a failed delivery
            session: Optional requests session (for connection reuse)
            retry_delay: Seconds to wait between attempts
        """
        self.url = TELEGRAM_API_URL.format(token=bot_token)
        self.chat_id = chat_id
        self.timeout = timeout
        self.retries = retries
        self.session = session or requests.Session()
        self.retry_delay = retry_delay

    def notify(self, text: str, chat: bool = True):
        super().notify(text)
        if not chat:
            return

        payload = {
            'chat_id': self.chat_id,
            'text': text,
            'disable_web_page_preview': 'true',
        }

        for attempt in range(self.retries + 1):
            try:
                response = self.session.post(self.url, data=payload, timeout=self.timeout)
                response.raise_for_status()
                return
            except requests.RequestException as e:
                logger.warning(f"Telegram delivery failed (attempt {attempt + 1}/{self.retries + 1}): {e}")
                if attempt < self.retries and self.retry_delay:
                    time.sleep(self.retry_delay)

    __call__ = notify


def create_notifier(config) -> Notifier:
    """
    Build the notifier for a configuration.

    Args:
        config: Config instance

    Returns:
        TelegramNotifier if Telegram is configured, log-only Notifier otherwise
    """
    configure_message_log(config.NOTIFY_LOG_FILE)

    if config.telegram_enabled:
        return TelegramNotifier(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHAT_ID)

    logger.info("Telegram not configured; notifications are logged only")
    return Notifier()
