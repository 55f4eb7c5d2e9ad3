"""Notifier that sends one e-mail per consumer group notification."""

from __future__ import annotations

import ipaddress
import quopri
import re
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from email.message import Message
from typing import Any, Callable

from jinja2 import TemplateError

from .base import NotifierModule
from .status import ConsumerGroupStatus
from .templates import build_ssl_context, execute_template

_SUBJECT = "Subject: "
_CONTENT_TYPE = "Content-Type: "
_MIME_VERSION = "MIME-version: "

_SMTP_TIMEOUT = 10.0
_SMTPS_PORT = 465

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
_HOSTNAME = re.compile(rf"^(?=.{{1,253}}$){_LABEL}(?:\.{_LABEL})*\.?$")


def valid_host_port(host: str, port: int) -> bool:
    """Whether host is a hostname or IP address and port is between 1 and 65535."""
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        return False
    if not host:
        return False
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return bool(_HOSTNAME.match(host))


@dataclass
class SmtpSettings:
    """How to reach and authenticate with the mail server."""

    host: str
    port: int
    ssl_context: ssl.SSLContext
    auth_type: str = ""
    username: str = field(default_factory=str)
    password: str = field(default_factory=str)


def _keyword_content(line: str, delimiter: str) -> str:
    return line.split(delimiter)[1]


def _option(config_root: str, option: str) -> str:
    return f"{config_root}.{option}"


class EmailNotifier(NotifierModule):
    """Sends an e-mail for each consumer group notification.

    The rendered template must start with a "Subject: " line. "Content-Type: "
    and "MIME-version: " lines become headers; every other line is the body.
    """

    def __init__(
        self,
        *args: Any,
        send_mail: Callable[[Message], None] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.to = ""
        self.sender = ""
        self.smtp: SmtpSettings | None = None
        self._send_mail = send_mail or self.send_email

    def configure(self, name: str, config_root: str) -> None:
        """Validate server, port, addresses and authentication settings.

        Raises ValueError when any of them is missing or wrong.
        """
        super().configure(name, config_root)
        config = self.config

        host = config.get_str(_option(config_root, "server"))
        port = config.get_int(_option(config_root, "port"))
        if not valid_host_port(host, port):
            self.log.error("bad server or port")
            raise ValueError(f"configuration error: bad server or port {host}:{port}")

        self.sender = config.get_str(_option(config_root, "from"))
        if not self.sender:
            self.log.error("missing from address")
            raise ValueError("configuration error: missing from address")

        self.to = config.get_str(_option(config_root, "to"))
        if not self.to:
            self.log.error("missing to address")
            raise ValueError("configuration error: missing to address")

        auth_type = config.get_str(_option(config_root, "auth-type")).lower()
        if auth_type not in ("", "plain", "crammd5"):
            self.log.error("unknown auth type")
            raise ValueError(f"configuration error: unknown auth type {auth_type!r}")

        username = str()
        password = str()
        if auth_type:
            username = config.get_str(_option(config_root, "username"))
            password = config.get_str(_option(config_root, "password"))

        extra_ca = config.get_str(_option(config_root, "extra-ca"))
        no_verify = config.get_bool(_option(config_root, "noverify"))
        self.smtp = SmtpSettings(
            host=host,
            port=port,
            ssl_context=build_ssl_context(extra_ca, no_verify, host),
            auth_type=auth_type,
            username=username,
            password=password,
        )

    def notify(
        self,
        status: ConsumerGroupStatus,
        event_id: str,
        start_time: datetime | None,
        state_good: bool,
    ) -> None:
        """Render the open or close template and send it; failures are logged."""
        context = (
            f"cluster={status.cluster} group={status.group} id={event_id} status={status.status}"
        )
        template = self.template_close if state_good else self.template_open
        if template is None:
            self.log.error("failed to assemble: no template (%s)", context)
            return
        try:
            content = execute_template(template, self.extras, status, event_id, start_time)
        except (TemplateError, TypeError, ValueError, ArithmeticError) as err:
            self.log.error("failed to assemble: %s (%s)", err, context)
            return

        try:
            message = self.create_message(content)
        except ValueError as err:
            self.log.error("failed to send: %s (%s)", err, context)
            return

        try:
            self._send_mail(message)
        except (smtplib.SMTPException, OSError) as err:
            self.log.error("failed to send: %s (%s)", err, context)

    def create_message(self, message_content: str) -> Message:
        """Build a mail message from rendered template text."""
        if not message_content.startswith(_SUBJECT):
            raise ValueError(
                'no subject line detected. Please make sure "Subject: my_subject_line" '
                "is included in your template"
            )

        subject = ""
        mime_version = ""
        content_type = "text/plain"
        body_lines: list[str] = []
        for line in message_content.split("\n"):
            if line.startswith(_SUBJECT) and not subject:
                subject = _keyword_content(line, _SUBJECT)
            elif line.startswith(_CONTENT_TYPE):
                content_type = _keyword_content(line, _CONTENT_TYPE).replace(";", "")
            elif line.startswith(_MIME_VERSION):
                mime_version = _keyword_content(line, _MIME_VERSION).replace(";", "")
            else:
                body_lines.append(line + "\n")
        body = "".join(body_lines)

        recipients = [address.strip() for address in self.to.split(",") if address.strip()]
        message = Message()
        message["To"] = ", ".join(recipients)
        message["From"] = self.sender
        message["Subject"] = subject
        if mime_version:
            message["MIME-version"] = mime_version
        message["Content-Type"] = f"{content_type}; charset=UTF-8"
        message["Content-Transfer-Encoding"] = "quoted-printable"
        message.set_payload(quopri.encodestring(body.encode("utf-8")).decode("ascii"))
        return message

    def send_email(self, message: Message) -> None:
        """Deliver a message through the configured SMTP server."""
        settings = self.smtp
        if settings is None:
            raise RuntimeError("email notifier is not configured")

        if settings.port == _SMTPS_PORT:
            connection: smtplib.SMTP = smtplib.SMTP_SSL(
                settings.host, settings.port, timeout=_SMTP_TIMEOUT, context=settings.ssl_context
            )
        else:
            connection = smtplib.SMTP(settings.host, settings.port, timeout=_SMTP_TIMEOUT)

        with connection:
            connection.ehlo()
            if settings.port != _SMTPS_PORT and connection.has_extn("starttls"):
                connection.starttls(context=settings.ssl_context)
                connection.ehlo()
            if settings.auth_type and connection.has_extn("auth"):
                connection.user = settings.username
                connection.password = settings.password
                if settings.auth_type == "plain":
                    connection.auth("PLAIN", connection.auth_plain)
                else:
                    connection.auth("CRAM-MD5", connection.auth_cram_md5)
            connection.send_message(message)