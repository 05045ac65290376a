import pytest
from fastapi.testclient import TestClient

from formrelay.config import Settings, get_settings
from formrelay.main import app
from formrelay.routers.submissions import get_dispatcher
from formrelay.services.email import (
    GENERAL,
    RECRUITING,
    ChannelConfig,
    DispatchError,
    EmailService,
    MailDispatcher,
)

GENERAL_MAILBOX = "info@tragard.test"
RECRUITING_MAILBOX = "careers@tragard.test"


class RecordingEmailService(EmailService):
    """Records every message instead of talking to an SMTP server."""

    def __init__(self, config, sent):
        super().__init__(config)
        self.sent = sent
        self.fail_on = None
        self.attempts = 0

    def send_email(self, message):
        self.attempts += 1
        if self.fail_on == self.attempts:
            raise DispatchError("535 Authentication failed")
        self.sent.append((self.config.name, message))
        return f"<msg-{len(self.sent)}@tragard.test>"


@pytest.fixture
def sent():
    return []


@pytest.fixture
def dispatcher(sent):
    return MailDispatcher(
        general=RecordingEmailService(ChannelConfig(GENERAL, user=GENERAL_MAILBOX), sent),
        recruiting=RecordingEmailService(ChannelConfig(RECRUITING, user=RECRUITING_MAILBOX), sent),
    )


@pytest.fixture
def settings():
    return Settings(environment="development", verify_mail_on_startup=False)


@pytest.fixture
def client(dispatcher, settings):
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def general_mailbox():
    return GENERAL_MAILBOX


@pytest.fixture
def recruiting_mailbox():
    return RECRUITING_MAILBOX
