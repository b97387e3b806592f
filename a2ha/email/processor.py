# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Scan pass over the unread messages of a mailbox.

For every unread UID: fetch, parse, extract the task identifier, apply
the content safeguards, call the answer handler and flag the message
read.  Per-message failures (parse errors, handler errors) are contained
here; mailbox failures propagate so the listener can reconnect.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from a2ha.channel import AnswerHandler, call_handler
from a2ha.config import EmailChannelConfig
from a2ha.email.listener import MailboxClient
from a2ha.email.parsing import ParseError, normalize_content, parse_message
from a2ha.email.subject import extract_task_id


logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Outcome of one scan pass.

    Attributes:
        trigger: What started the pass (``"start"``, ``"push"``,
            ``"poll"``).
        found: Unread messages returned by the search.
        delivered: Handler calls that returned normally.
        handler_errors: Handler calls that raised.
        left_unread: UIDs considered and deliberately left unread
            (no identifier, parse failure, empty fetch, or the server
            refused the read flag).
        interrupted: The pass stopped early because stop was requested.
    """

    trigger: str
    found: int = 0
    delivered: int = 0
    handler_errors: int = 0
    left_unread: set[str] = field(default_factory=set)
    interrupted: bool = False


class MessageProcessor:
    """Runs scan passes for one mailbox session."""

    def __init__(
        self,
        config: EmailChannelConfig,
        client: MailboxClient,
        handler: AnswerHandler,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize processor.

        Args:
            config: Email channel configuration.
            client: Connected mailbox client.
            handler: Answer callback, ``handler(task_id, content)``.
            should_stop: Polled between messages; a true result ends the
                pass without starting further messages.
        """
        self._config = config
        self._client = client
        self._handler = handler
        self._should_stop = should_stop or (lambda: False)

    def scan(self, trigger: str = "poll") -> ScanResult:
        """Run one search-and-process pass.

        Args:
            trigger: Label for logs and the result.

        Returns:
            Summary of the pass.

        Raises:
            IMAPConnectionError: If the mailbox fails mid-pass.
        """
        result = ScanResult(trigger=trigger)
        uids = self._client.search_unseen()
        result.found = len(uids)
        if uids:
            logger.info(
                "Scan (%s) found %d unread message(s)", trigger, len(uids)
            )

        for index, uid in enumerate(uids):
            if self._should_stop():
                logger.info(
                    "Stop requested, leaving %d message(s) for later",
                    len(uids) - index,
                )
                result.interrupted = True
                break
            self.process(uid, result)
        return result

    def process(self, uid: str, result: ScanResult) -> None:
        """Process a single unread message.

        Args:
            uid: Message UID.
            result: Pass summary to update.

        Raises:
            IMAPConnectionError: If fetching or flagging fails.
        """
        raw = self._client.fetch_message(uid)
        if raw is None:
            logger.warning("Message %s returned no content, skipping", uid)
            result.left_unread.add(uid)
            return

        try:
            message = parse_message(uid, raw)
        except ParseError as e:
            logger.error("Skipping unparseable message %s: %s", uid, e)
            result.left_unread.add(uid)
            return

        task_id = extract_task_id(message.subject)
        if task_id is None:
            if self._config.mark_unmatched_read:
                logger.info(
                    "No task ID in subject %r, marking message %s read",
                    message.subject[:100],
                    uid,
                )
                self._mark_seen(uid, result)
            else:
                logger.info(
                    "No task ID in subject %r, leaving message %s unread",
                    message.subject[:100],
                    uid,
                )
                result.left_unread.add(uid)
            return

        content = normalize_content(
            message.content,
            form=self._config.normalization_form,
            max_length=self._config.max_content_length,
        )

        try:
            call_handler(self._handler, task_id, content)
            result.delivered += 1
            logger.info(
                "Delivered answer for task %s (message %s, %d chars)",
                task_id,
                uid,
                len(content),
            )
        except Exception as e:
            result.handler_errors += 1
            logger.exception(
                "Answer handler failed for task %s (message %s): %s",
                task_id,
                uid,
                e,
            )

        self._mark_seen(uid, result)

    def _mark_seen(self, uid: str, result: ScanResult) -> None:
        # Refused flags leave the message unread, so IDLE must skip it.
        if not self._client.mark_seen(uid):
            result.left_unread.add(uid)
