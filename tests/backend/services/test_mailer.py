import json
import smtplib

import httpx
import pytest

from backend.services import mailer as mailer_module
from backend.services.mailer import SENDGRID_SEND_URL, Mailer, MailerNotConfiguredError


class FakeSMTP:
    instances: list['FakeSMTP'] = []
    fail_login = False
    fail_starttls = False

    def __init__(self, host, port, context=None, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.sent = []
        self.closed = False
        FakeSMTP.instances.append(self)

    def starttls(self, context=None):
        if FakeSMTP.fail_starttls:
            raise smtplib.SMTPNotSupportedError('STARTTLS extension not supported by server.')
        self.started_tls = True

    def login(self, user, password):
        if FakeSMTP.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b'bad credentials')
        self.credentials = (user, password)

    def sendmail(self, sender, recipients, message):
        self.sent.append((sender, recipients, message))

    def quit(self):
        self.closed = True


@pytest.fixture
def fake_smtp(monkeypatch: pytest.MonkeyPatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_login = False
    FakeSMTP.fail_starttls = False
    monkeypatch.setattr(mailer_module.smtplib, 'SMTP', FakeSMTP)
    monkeypatch.setattr(mailer_module.smtplib, 'SMTP_SSL', FakeSMTP)
    return FakeSMTP


def sendgrid_client(requests: list[httpx.Request], status_code: int = 202) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code)

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_send_uses_smtp_when_fully_configured(fake_smtp) -> None:
    mailer = Mailer(
        smtp_host='smtp.example.com',
        smtp_port=587,
        smtp_user='mailer',
        smtp_password='secret',
        from_email='studio@example.com',
    )

    backend = mailer.send('ada@example.com', 'Lesson booked', text='See you', html='<p>See you</p>')

    assert backend == 'smtp'
    server = fake_smtp.instances[0]
    assert server.started_tls is True
    assert server.credentials == ('mailer', 'secret')
    assert server.sent[0][0] == 'studio@example.com'
    assert server.sent[0][1] == ['ada@example.com']
    assert server.closed is True


def test_send_falls_back_to_sendgrid_when_smtp_fails(fake_smtp) -> None:
    fake_smtp.fail_login = True
    requests: list[httpx.Request] = []
    mailer = Mailer(
        smtp_host='smtp.example.com',
        smtp_port=465,
        smtp_user='mailer',
        smtp_password='wrong',
        sendgrid_api_key='SG.test',
        http_client=sendgrid_client(requests),
    )

    assert mailer.send('ada@example.com', 'Lesson booked', text='See you') == 'sendgrid'
    assert len(requests) == 1


def test_send_posts_sendgrid_payload(fake_smtp) -> None:
    requests: list[httpx.Request] = []
    mailer = Mailer(sendgrid_api_key='SG.test', from_email='studio@example.com', http_client=sendgrid_client(requests))

    mailer.send(['ada@example.com'], 'Lesson cancelled', text='Sorry', html='<p>Sorry</p>')

    request = requests[0]
    assert str(request.url) == SENDGRID_SEND_URL
    assert request.headers['Authorization'] == 'Bearer SG.test'
    payload = json.loads(request.content)
    assert payload['personalizations'] == [{'to': [{'email': 'ada@example.com'}]}]
    assert payload['from'] == {'email': 'studio@example.com'}
    assert payload['subject'] == 'Lesson cancelled'
    assert [part['type'] for part in payload['content']] == ['text/plain', 'text/html']
    assert fake_smtp.instances == []


def test_send_raises_on_sendgrid_error_status() -> None:
    mailer = Mailer(sendgrid_api_key='SG.test', http_client=sendgrid_client([], status_code=401))

    with pytest.raises(httpx.HTTPStatusError):
        mailer.send('ada@example.com', 'Lesson booked', text='See you')


def test_send_without_configuration_raises() -> None:
    mailer = Mailer()

    assert mailer.is_configured is False
    with pytest.raises(MailerNotConfiguredError):
        mailer.send('ada@example.com', 'Lesson booked')


def test_partial_smtp_settings_do_not_enable_smtp() -> None:
    assert Mailer(smtp_host='smtp.example.com', smtp_port=587).smtp_enabled is False


def test_failed_starttls_still_closes_connection(fake_smtp) -> None:
    fake_smtp.fail_starttls = True
    mailer = Mailer(smtp_host='smtp.example.com', smtp_port=587, smtp_user='mailer', smtp_password='secret')

    with pytest.raises(MailerNotConfiguredError):
        mailer.send('ada@example.com', 'Lesson booked', text='See you')

    server = fake_smtp.instances[0]
    assert server.started_tls is False
    assert server.closed is True
