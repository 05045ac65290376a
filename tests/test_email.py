import asyncio
import smtplib

import pytest

from formrelay.services.email import (
    GENERAL,
    RECRUITING,
    Attachment,
    ChannelConfig,
    DispatchError,
    EmailService,
    MailDispatcher,
    MailMessage,
)


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None, context=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls = []
        self.sent = None
        FakeSMTP.instances.append(self)

    def ehlo(self):
        self.calls.append("ehlo")

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        if password == "wrong":
            raise smtplib.SMTPAuthenticationError(535, b"Authentication Failed")
        self.calls.append("login")

    def send_message(self, msg, from_addr=None, to_addrs=None):
        self.sent = (msg, from_addr, to_addrs)

    def quit(self):
        self.calls.append("quit")

    def close(self):
        self.calls.append("close")


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


def make_service(**overrides):
    config = dict(name=GENERAL, smtp_host="smtp.example.com", user="info@tragard.test", password="secret")
    config.update(overrides)
    return EmailService(ChannelConfig(**config))


def make_message(**overrides):
    message = dict(
        sender="info@tragard.test",
        to="ada@x.com",
        subject="Hello",
        html_body="<p>Hi</p>",
        reply_to="reply@x.com",
    )
    message.update(overrides)
    return MailMessage(**message)


def test_channel_config_from_env(monkeypatch):
    monkeypatch.setenv("CAREER_USER", "careers@tragard.test")
    monkeypatch.setenv("CAREER_PASS", "pw")
    monkeypatch.setenv("CAREER_PORT", "465")
    monkeypatch.setenv("CAREER_SECURITY", "SSL")
    monkeypatch.delenv("CAREER_HOST", raising=False)
    monkeypatch.delenv("CAREER_TIMEOUT", raising=False)

    config = ChannelConfig.from_env(RECRUITING, "CAREER")

    assert config == ChannelConfig(
        name=RECRUITING,
        smtp_host="smtp.zoho.com",
        smtp_port=465,
        security="ssl",
        timeout=60.0,
        user="careers@tragard.test",
        password="pw",
    )


def test_channel_config_rejects_unknown_security(monkeypatch):
    monkeypatch.setenv("EMAIL_SECURITY", "tls1.3")

    with pytest.raises(ValueError):
        ChannelConfig.from_env(GENERAL, "EMAIL")


def test_sender_display_name():
    config = ChannelConfig(GENERAL, user="info@tragard.test")

    assert config.sender("Tragard Team") == "Tragard Team <info@tragard.test>"
    assert config.sender() == "info@tragard.test"
    assert ChannelConfig(GENERAL).sender("Tragard Team") == ""


def test_build_message_headers_and_attachment():
    service = make_service()
    message = make_message(attachments=[Attachment("cv.pdf", b"%PDF", "application/pdf")])

    msg = service.build_message(message)

    assert msg["To"] == "ada@x.com"
    assert msg["Reply-To"] == "reply@x.com"
    assert msg["Message-ID"].endswith("@tragard.test>")
    attachments = list(msg.iter_attachments())
    assert len(attachments) == 1
    assert attachments[0].get_filename() == "cv.pdf"
    assert attachments[0].get_content_type() == "application/pdf"
    assert attachments[0].get_content() == b"%PDF"
    assert msg.get_body(("html",)).get_content().strip() == "<p>Hi</p>"


def test_build_message_rejects_header_injection():
    with pytest.raises(DispatchError):
        make_service().build_message(make_message(subject="Hello\r\nBcc: everyone@x.com"))


def test_send_email_uses_starttls_and_returns_message_id(fake_smtp):
    service = make_service()

    message_id = service.send_email(make_message())

    server = fake_smtp.instances[0]
    assert (server.host, server.port, server.timeout) == ("smtp.example.com", 587, 60.0)
    assert server.calls == ["ehlo", "starttls", "ehlo", "login", "quit"]
    msg, from_addr, to_addrs = server.sent
    assert from_addr == "info@tragard.test"
    assert to_addrs == ["ada@x.com"]
    assert message_id == msg["Message-ID"]


def test_send_email_without_tls(fake_smtp):
    make_service(security="none").send_email(make_message())

    assert fake_smtp.instances[0].calls == ["ehlo", "login", "quit"]


def test_authentication_failure_raises_dispatch_error(fake_smtp):
    service = make_service(password="wrong")

    with pytest.raises(DispatchError) as excinfo:
        service.send_email(make_message())

    assert isinstance(excinfo.value.__cause__, smtplib.SMTPAuthenticationError)
    assert fake_smtp.instances[0].calls[-1] == "close"


def test_connection_timeout_raises_dispatch_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise TimeoutError("timed out")

    monkeypatch.setattr(smtplib, "SMTP", refuse)

    with pytest.raises(DispatchError):
        make_service().send_email(make_message())


def test_missing_host_raises_dispatch_error():
    with pytest.raises(DispatchError):
        make_service(smtp_host="").send_email(make_message())


def test_dispatcher_send_and_unknown_channel(fake_smtp):
    dispatcher = MailDispatcher(general=make_service(), recruiting=make_service(name=RECRUITING))

    message_id = asyncio.run(dispatcher.send(GENERAL, make_message()))

    assert message_id.startswith("<")
    with pytest.raises(DispatchError):
        asyncio.run(dispatcher.send("marketing", make_message()))


def test_verify_all_is_advisory(fake_smtp):
    dispatcher = MailDispatcher(
        general=make_service(),
        recruiting=make_service(name=RECRUITING, password="wrong"),
    )

    results = asyncio.run(dispatcher.verify_all())

    assert results == {GENERAL: True, RECRUITING: False}


def test_verify_all_survives_unexpected_errors():
    class BrokenService(EmailService):
        def verify(self):
            raise RuntimeError("resolver crashed")

    dispatcher = MailDispatcher(
        general=BrokenService(ChannelConfig(GENERAL)),
        recruiting=BrokenService(ChannelConfig(RECRUITING)),
    )

    results = asyncio.run(dispatcher.verify_all())

    assert results == {GENERAL: False, RECRUITING: False}
