"""Outbound mail channels.

Two independently configured SMTP channels (general and recruiting) are
wrapped by a small dispatcher with a single ``send`` operation. Sending
uses the standard library (smtplib + EmailMessage); the blocking work is
pushed to a worker thread so request handlers can simply ``await`` it.

Configuration is read from environment variables via
``ChannelConfig.from_env``.
"""
from __future__ import annotations

import os
import ssl
import smtplib
import logging
import asyncio
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from dataclasses import dataclass, field
from typing import List, Optional, Dict

logger = logging.getLogger(__name__)

GENERAL = "general"
RECRUITING = "recruiting"

SECURITY_MODES = ("starttls", "ssl", "none")


class DispatchError(Exception):
	"""Raised when a message could not be handed to the mail server."""


@dataclass(frozen=True)
class ChannelConfig:
	name: str
	smtp_host: str = "smtp.zoho.com"
	smtp_port: int = 587
	security: str = "starttls"
	timeout: float = 60.0
	user: Optional[str] = None
	password: Optional[str] = None

	@classmethod
	def from_env(cls, name: str, prefix: str) -> "ChannelConfig":
		security = os.getenv(f"{prefix}_SECURITY", "starttls").lower()
		if security not in SECURITY_MODES:
			raise ValueError(f"{prefix}_SECURITY must be one of {', '.join(SECURITY_MODES)}")
		return cls(
			name=name,
			smtp_host=os.getenv(f"{prefix}_HOST", "smtp.zoho.com"),
			smtp_port=int(os.getenv(f"{prefix}_PORT", "587")),
			security=security,
			timeout=float(os.getenv(f"{prefix}_TIMEOUT", "60")),
			user=os.getenv(f"{prefix}_USER") or None,
			password=os.getenv(f"{prefix}_PASS") or None,
		)

	@property
	def mailbox(self) -> str:
		return self.user or ""

	def sender(self, display_name: Optional[str] = None) -> str:
		if display_name and self.user:
			return formataddr((display_name, self.user))
		return self.mailbox


@dataclass(frozen=True)
class Attachment:
	filename: str
	content: bytes
	content_type: str = "application/octet-stream"


@dataclass
class MailMessage:
	sender: str
	to: str
	subject: str
	html_body: str
	reply_to: Optional[str] = None
	attachments: List[Attachment] = field(default_factory=list)


class EmailService:
	"""Sends messages through one configured SMTP channel."""

	def __init__(self, config: ChannelConfig):
		self.config = config

	def build_message(self, message: MailMessage) -> EmailMessage:
		"""Build the MIME message, including a fresh Message-ID.

		Raises DispatchError if a header (e.g. a recipient) is malformed.
		"""
		msg = EmailMessage()
		try:
			msg["Subject"] = message.subject
			msg["From"] = message.sender
			msg["To"] = message.to
			if message.reply_to:
				msg["Reply-To"] = message.reply_to
			domain = self.config.mailbox.rpartition("@")[2] or None
			msg["Message-ID"] = make_msgid(domain=domain)
		except (ValueError, TypeError) as exc:
			raise DispatchError(f"Invalid message header: {exc}") from exc

		msg.set_content(message.html_body, subtype="html")
		for attachment in message.attachments:
			maintype, _, subtype = attachment.content_type.partition("/")
			if not subtype:
				maintype, subtype = "application", "octet-stream"
			msg.add_attachment(
				attachment.content,
				maintype=maintype,
				subtype=subtype,
				filename=attachment.filename,
			)
		return msg

	def _connect(self) -> smtplib.SMTP:
		cfg = self.config
		if not cfg.smtp_host:
			raise DispatchError(f"SMTP host not configured for {cfg.name} channel")

		if cfg.security == "ssl":
			server = smtplib.SMTP_SSL(
				cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout, context=ssl.create_default_context()
			)
		else:
			server = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout)
		try:
			server.ehlo()
			if cfg.security == "starttls":
				# Start with plain SMTP and upgrade to TLS via STARTTLS
				server.starttls(context=ssl.create_default_context())
				server.ehlo()
			if cfg.user and cfg.password:
				server.login(cfg.user, cfg.password)
		except BaseException:
			server.close()
			raise
		return server

	@staticmethod
	def _disconnect(server: smtplib.SMTP) -> None:
		try:
			server.quit()
		except (smtplib.SMTPException, OSError):
			server.close()

	def send_email(self, message: MailMessage) -> str:
		"""Send a message via SMTP (blocking) and return its Message-ID.

		Raises DispatchError on any transport, authentication or
		recipient failure; the underlying exception is chained.
		"""
		msg = self.build_message(message)
		try:
			server = self._connect()
			try:
				server.send_message(msg, from_addr=self.config.mailbox, to_addrs=[message.to])
			finally:
				self._disconnect(server)
		except (smtplib.SMTPException, OSError) as exc:
			raise DispatchError(f"{self.config.name} channel send failed: {exc}") from exc
		return msg["Message-ID"]

	async def send_email_async(self, message: MailMessage) -> str:
		"""Async wrapper for send_email using asyncio.to_thread."""
		return await asyncio.to_thread(self.send_email, message)

	def verify(self) -> None:
		"""Open a connection, negotiate security and log in, then hang up."""
		try:
			server = self._connect()
		except (smtplib.SMTPException, OSError) as exc:
			raise DispatchError(f"{self.config.name} channel unreachable: {exc}") from exc
		self._disconnect(server)


class MailDispatcher:
	"""Holds the general and recruiting channels, keyed by name."""

	def __init__(self, general: EmailService, recruiting: EmailService):
		self.channels: Dict[str, EmailService] = {
			GENERAL: general,
			RECRUITING: recruiting,
		}

	@classmethod
	def from_env(cls) -> "MailDispatcher":
		return cls(
			general=EmailService(ChannelConfig.from_env(GENERAL, "EMAIL")),
			recruiting=EmailService(ChannelConfig.from_env(RECRUITING, "CAREER")),
		)

	def channel(self, name: str) -> EmailService:
		try:
			return self.channels[name]
		except KeyError:
			raise DispatchError(f"Unknown mail channel: {name}") from None

	def config(self, name: str) -> ChannelConfig:
		return self.channel(name).config

	async def send(self, channel: str, message: MailMessage) -> str:
		return await self.channel(channel).send_email_async(message)

	async def verify_all(self) -> Dict[str, bool]:
		"""Check every channel. Failures are logged, never raised."""
		results: Dict[str, bool] = {}
		for name, service in self.channels.items():
			try:
				await asyncio.to_thread(service.verify)
			except Exception as exc:
				logger.warning("%s mail channel connection error: %s", name, exc)
				results[name] = False
			else:
				logger.info("%s mail channel is ready to send emails", name)
				results[name] = True
		return results
