"""Mailbox access for the sync processor.

The processor only needs three things from a mail server: the sequence numbers
in a folder, the raw bytes of one message, and a way to hang up. MailFetcher is
that interface; ImapMailFetcher implements it over aioimaplib.
"""
import logging
import ssl
from typing import List, Optional, Protocol

import aioimaplib

logger = logging.getLogger(__name__)


class MailFetchError(RuntimeError):
    pass


class MailFetcher(Protocol):
    async def open(self) -> None: ...

    async def list_sequence_numbers(self, folder: str = "INBOX") -> List[int]: ...

    async def fetch(self, sequence_number: int) -> Optional[bytes]: ...

    async def close(self) -> None: ...


class ImapMailFetcher:
    def __init__(self, host: str, port: int, username: str, password: str, timeout: float = 30.0):
        self.host = host
        self.port = port or 993
        self.username = username
        self.password = password
        self.timeout = timeout
        self.client: Optional[aioimaplib.IMAP4_SSL] = None

    async def open(self) -> None:
        if not self.host:
            raise MailFetchError("Mailbox has no IMAP host configured")
        self.client = aioimaplib.IMAP4_SSL(
            host=self.host,
            port=self.port,
            ssl_context=ssl.create_default_context(),
            timeout=self.timeout,
        )
        await self.client.wait_hello_from_server()
        response = await self.client.login(self.username, self.password)
        if response.result != "OK":
            raise MailFetchError(f"IMAP login failed for {self.username}@{self.host}")
        logger.info(f"Connected to IMAP server: {self.host}")

    async def list_sequence_numbers(self, folder: str = "INBOX") -> List[int]:
        if not self.client:
            raise MailFetchError("IMAP client not connected")
        response = await self.client.select(folder)
        if response.result != "OK":
            raise MailFetchError(f"IMAP select {folder} failed: {response.result}")
        response = await self.client.search("ALL")
        if response.result != "OK":
            raise MailFetchError(f"IMAP search failed: {response.result}")
        first = response.lines[0] if response.lines else b""
        return [int(n) for n in first.split() if n.isdigit()]

    async def fetch(self, sequence_number: int) -> Optional[bytes]:
        if not self.client:
            raise MailFetchError("IMAP client not connected")
        response = await self.client.fetch(str(sequence_number), "(RFC822)")
        if response.result != "OK" or len(response.lines) < 2:
            logger.warning(f"Failed to fetch message {sequence_number}: {response.result}")
            return None
        return bytes(response.lines[1])

    async def close(self) -> None:
        if not self.client:
            return
        try:
            await self.client.logout()
        except Exception as e:
            logger.warning(f"IMAP logout failed for {self.host}: {e}")
        finally:
            self.client = None
