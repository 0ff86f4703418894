"""
WhatsApp Transport - Selenium-Based WhatsApp Web Session
=========================================================

Drives WhatsApp Web in a Chrome browser. The QR code shown on the login page
is surfaced to the operator through `on_session_start`; once the chat list
loads the transport polls the open chat and the sidebar's unread chats for new
incoming messages and publishes them onto the message channel. Replies are
inserted through `document.execCommand` so emoji survive.

Selenium is blocking and its driver is not thread-safe, so every browser
interaction runs in a worker thread behind a single asyncio lock.
"""

import asyncio
import logging
import random
import re
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from selenium import webdriver
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.common.exceptions import (
    NoSuchElementException,
    StaleElementReferenceException,
    WebDriverException,
)
from webdriver_manager.chrome import ChromeDriverManager

from relaybot.config import Settings
from relaybot.infra.bus import MessageChannel
from relaybot.signals.message import IncomingMessage
from .base import SessionTransport, SessionState, SessionStartError, TransportError

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"

HEADLESS_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

# Inserts text at the caret as if typed or pasted
INSERT_TEXT_SCRIPT = (
    "arguments[0].focus(); "
    "document.execCommand('insertText', false, arguments[1]);"
)

# "[10:32, 18/10/2026] Alice: "
_PRE_PLAIN_TEXT = re.compile(r"^\[(?P<stamp>[^\]]*)\]\s*(?P<sender>.*?):\s*$")


def parse_pre_plain_text(value: str) -> Tuple[Optional[str], Optional[str]]:
    """Split a data-pre-plain-text attribute into (timestamp, sender name)."""
    match = _PRE_PLAIN_TEXT.match((value or "").strip())
    if not match:
        return None, None
    return match.group("stamp").strip() or None, match.group("sender").strip() or None


def parse_data_id(data_id: str) -> Optional[Dict[str, object]]:
    """
    Parse a WhatsApp Web message data-id.

    Format: "<fromMe>_<chat jid>_<message id>[_<participant jid>]", where the
    participant part is only present for group messages.
    """
    if not data_id:
        return None
    parts = data_id.split("_")
    if len(parts) < 3 or parts[0] not in ("true", "false"):
        return None
    return {
        "from_me": parts[0] == "true",
        "chat_jid": parts[1],
        "message_id": parts[2],
        "participant": parts[3] if len(parts) > 3 and parts[3] else None,
    }


def jid_user(jid: Optional[str]) -> Optional[str]:
    """'15551234567@c.us' -> '15551234567'."""
    if not jid:
        return None
    return jid.split("@", 1)[0]


def build_incoming_message(data_id: str, pre_plain_text: str, body: str,
                           chat_title: Optional[str] = None) -> Optional[IncomingMessage]:
    """Build an IncomingMessage from scraped message attributes, or None for our own messages."""
    parsed = parse_data_id(data_id)
    if parsed is None or parsed["from_me"]:
        return None

    chat_jid = parsed["chat_jid"]
    is_group = chat_jid.endswith("@g.us")
    sender_jid = parsed["participant"] if is_group and parsed["participant"] else chat_jid
    _, sender_name = parse_pre_plain_text(pre_plain_text)

    return IncomingMessage(
        sender_id=jid_user(sender_jid),
        body=body or "",
        received_at=datetime.now(timezone.utc),
        source="whatsapp",
        chat_id=chat_jid,
        message_id=parsed["message_id"],
        sender_name=sender_name or chat_title,
        is_group=is_group,
    )


class WhatsAppTransport(SessionTransport):
    """
    Selenium-based WhatsApp Web session transport.
    """

    name = "whatsapp"

    SELECTORS = {
        "qr_code": 'div[data-ref]',
        "chat_list": '#pane-side',
        "search_box": 'div[contenteditable="true"][data-tab="3"]',
        "message_input": 'footer div[contenteditable="true"]',
        "unread_badge": 'span[aria-label*="unread message"]',
        "incoming_message": 'div.message-in',
        "message_meta": 'div[data-pre-plain-text]',
    }

    TEXT_SELECTORS = [
        'span.selectable-text.copyable-text > span',
        'span.selectable-text.copyable-text',
        'span.selectable-text',
        'span[dir="ltr"]',
    ]

    SEEN_CACHE_SIZE = 2000

    def __init__(self, settings: Settings, channel: MessageChannel, driver_factory=None):
        super().__init__(channel)
        self._settings = settings
        self._driver_factory = driver_factory or self._create_driver
        self.driver = None
        self._lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None
        self._seen_ids: "OrderedDict[str, None]" = OrderedDict()
        self._chat_titles: Dict[str, str] = {}
        self._active_chat: Optional[str] = None

    # Session establishment

    async def _start(self) -> None:
        try:
            self.driver = await asyncio.to_thread(self._driver_factory)
            await asyncio.to_thread(self.driver.get, WHATSAPP_WEB_URL)
            logger.info("Opened WhatsApp Web")
        except WebDriverException as e:
            raise SessionStartError(f"Failed to launch browser: {e}") from e

        await self._wait_for_login(self._settings.whatsapp_login_timeout)
        await self.on_ready()

        self._poll_task = asyncio.create_task(self._poll_loop(), name="whatsapp-poll")

    def _create_driver(self) -> webdriver.Chrome:
        """Create and configure Chrome WebDriver."""
        options = webdriver.ChromeOptions()

        if self._settings.whatsapp_headless:
            options.add_argument("--headless=new")
            options.add_argument(f"--user-agent={HEADLESS_USER_AGENT}")
            options.add_argument("--window-size=1280,900")
        else:
            options.add_argument("--start-maximized")

        options.add_argument("--disable-gpu")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument(f"--user-data-dir={self._settings.whatsapp_profile_dir}")
        logger.info(f"Using Chrome profile at: {self._settings.whatsapp_profile_dir}")

        service = ChromeService(ChromeDriverManager().install())
        return webdriver.Chrome(service=service, options=options)

    async def _wait_for_login(self, timeout: int) -> None:
        """Surface each QR code until the chat list shows up."""
        logger.info(f"Waiting up to {timeout}s for WhatsApp login...")
        deadline = time.monotonic() + timeout
        last_code = None

        while time.monotonic() < deadline:
            try:
                async with self._lock:
                    logged_in, code = await asyncio.to_thread(self._read_login_state)
            except WebDriverException as e:
                raise SessionStartError(f"Browser failed during WhatsApp login: {e}") from e

            if logged_in:
                logger.info("WhatsApp Web loaded successfully")
                return

            if code and code != last_code:
                last_code = code
                await self.on_session_start(code)

            await asyncio.sleep(1.0)

        raise SessionStartError(f"Timed out after {timeout}s waiting for WhatsApp login")

    def _read_login_state(self) -> Tuple[bool, Optional[str]]:
        if self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["chat_list"]):
            return True, None
        for element in self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["qr_code"]):
            try:
                code = element.get_attribute("data-ref")
            except StaleElementReferenceException:
                continue
            if code:
                return False, code
        return False, None

    # Receiving

    async def _poll_loop(self) -> None:
        """Poll the chat list for unread chats and publish their messages."""
        interval = self._settings.whatsapp_poll_interval
        logger.info(f"WhatsApp polling started (every {interval}s)")

        while self.state == SessionState.READY:
            try:
                async with self._lock:
                    messages = await asyncio.to_thread(self._collect_unread)
                for message in messages:
                    self.publish(message)
            except asyncio.CancelledError:
                raise
            except WebDriverException as e:
                if "invalid session id" in str(e).lower() or "disconnected" in str(e).lower():
                    await self.on_disconnected(str(e).splitlines()[0])
                    break
                logger.warning(f"⚠️ WhatsApp poll failed: {e}")
            except Exception as e:
                logger.error(f"❌ Unexpected error polling WhatsApp: {e}", exc_info=True)

            await asyncio.sleep(interval)

        logger.info("WhatsApp polling stopped")

    def _collect_unread(self) -> List[IncomingMessage]:
        """Read new messages from the open chat and from every chat with an unread badge."""
        collected = self._read_open_chat()

        for badge in self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["unread_badge"]):
            try:
                unread = self._badge_count(badge)
                row = badge.find_element(By.XPATH, "./ancestor::div[@role='listitem']")
                title = self._chat_title(row)
                row.click()
            except (NoSuchElementException, StaleElementReferenceException):
                continue

            self._active_chat = title or ""
            self._random_delay(0.8, 1.5)
            collected.extend(self._read_incoming(title, unread))

        return collected

    def _read_open_chat(self) -> List[IncomingMessage]:
        # WhatsApp shows no badge for the chat that is open
        if self._active_chat is None or self._find_message_input() is None:
            return []
        return self._read_incoming(self._active_chat or None)

    def _badge_count(self, badge) -> int:
        match = re.search(r"\d+", badge.get_attribute("aria-label") or badge.text or "")
        return max(1, int(match.group())) if match else 1

    def _chat_title(self, row) -> Optional[str]:
        try:
            return row.find_element(By.CSS_SELECTOR, 'span[title]').get_attribute("title")
        except NoSuchElementException:
            return None

    def _read_incoming(self, title: Optional[str], unread: Optional[int] = None) -> List[IncomingMessage]:
        """
        Read unseen incoming messages of the open chat, newest first, stopping
        at the first one already seen.

        With `unread` set only the last `unread` messages are new; the message
        just before them is marked seen so later scans of this chat stop there.
        Without it, a chat with no seen message at all is unfamiliar history:
        its messages are marked seen and nothing is published.
        """
        elements = self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["incoming_message"])
        first_new = len(elements) - unread if unread is not None else 0
        messages = []
        familiar = unread is not None

        for index in range(len(elements) - 1, -1, -1):
            element = elements[index]
            try:
                container = element.find_element(By.XPATH, "./ancestor-or-self::div[@data-id][1]")
                data_id = container.get_attribute("data-id")
            except (NoSuchElementException, StaleElementReferenceException):
                continue

            if not data_id:
                continue
            if data_id in self._seen_ids:
                familiar = True
                break
            self._remember(data_id)
            if index < first_new:
                break

            message = build_incoming_message(data_id, self._pre_plain_text(element),
                                             self._extract_text(element), title)
            if message is not None:
                messages.append(message)

        if not familiar:
            if messages:
                logger.debug(f"Skipped {len(messages)} message(s) of an unfamiliar open chat")
            return []

        messages.reverse()
        if title:
            for message in messages:
                self._chat_titles[message.chat_id] = title
        return messages

    def _pre_plain_text(self, element) -> str:
        try:
            meta = element.find_elements(By.CSS_SELECTOR, self.SELECTORS["message_meta"])
            return meta[0].get_attribute("data-pre-plain-text") if meta else ""
        except StaleElementReferenceException:
            return ""

    def _extract_text(self, element) -> str:
        """Extract text content from a message element."""
        for selector in self.TEXT_SELECTORS:
            try:
                for text_el in element.find_elements(By.CSS_SELECTOR, selector):
                    text = text_el.text.strip()
                    if text:
                        return text
            except StaleElementReferenceException:
                continue
        return ""

    def _remember(self, data_id: str) -> None:
        self._seen_ids[data_id] = None
        while len(self._seen_ids) > self.SEEN_CACHE_SIZE:
            self._seen_ids.popitem(last=False)

    # Sending

    async def _send(self, message: IncomingMessage, text: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._send_sync, message, text)

    def _send_sync(self, message: IncomingMessage, text: str) -> None:
        target = self._chat_titles.get(message.reply_target()) or jid_user(message.reply_target())
        if not self._open_chat(target):
            self._active_chat = None
            raise TransportError(f"Could not open WhatsApp chat: {target}")
        self._active_chat = target

        input_box = self._find_message_input()
        if input_box is None:
            raise TransportError("Could not find message input box")

        try:
            input_box.click()
            lines = text.split("\n")
            for i, line in enumerate(lines):
                # ChromeDriver's send_keys rejects characters outside the BMP, such as emoji
                if line:
                    self.driver.execute_script(INSERT_TEXT_SCRIPT, input_box, line)
                if i < len(lines) - 1:
                    input_box.send_keys(Keys.SHIFT, Keys.ENTER)
            self._random_delay(0.2, 0.5)
            input_box.send_keys(Keys.ENTER)
        except WebDriverException:
            self._clear_input(input_box)
            raise

        logger.info(f"Sent message to {target}: {text[:50]}...")

    def _clear_input(self, input_box) -> None:
        """Drop a half-typed draft so the next reply starts from an empty box."""
        try:
            input_box.send_keys(Keys.CONTROL + "a")
            input_box.send_keys(Keys.BACKSPACE)
        except WebDriverException as e:
            logger.debug(f"Could not clear message input: {e}")

    def _open_chat(self, target: Optional[str]) -> bool:
        """Open a chat by title or phone number through the search box."""
        if not target:
            return False
        try:
            search_box = self.driver.find_element(By.CSS_SELECTOR, self.SELECTORS["search_box"])
        except NoSuchElementException:
            return False

        search_box.click()
        search_box.send_keys(Keys.CONTROL + "a")
        search_box.send_keys(Keys.BACKSPACE)
        search_box.send_keys(target)
        self._random_delay(1.0, 2.0)
        search_box.send_keys(Keys.ENTER)
        self._random_delay(0.8, 1.5)

        return self._find_message_input() is not None

    def _find_message_input(self):
        try:
            return self.driver.find_element(By.CSS_SELECTOR, self.SELECTORS["message_input"])
        except NoSuchElementException:
            return None

    def _random_delay(self, min_s: float, max_s: float) -> None:
        """Add human-like random delay."""
        time.sleep(random.uniform(min_s, max_s))

    # Shutdown

    async def close(self) -> None:
        """Stop polling and close the browser."""
        self.state = SessionState.CLOSED

        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass

        if self.driver is not None:
            try:
                await asyncio.to_thread(self.driver.quit)
                logger.info("Browser closed")
            except WebDriverException as e:
                logger.debug(f"Error closing browser: {e}")
            self.driver = None
