import logging
import ssl

import pytest

from groupnotifier.config import Config
from groupnotifier.email_notifier import EmailNotifier, valid_host_port
from groupnotifier.status import ConsumerGroupStatus, Status
from groupnotifier.templates import parse_template_string


def make_config():
    return Config(
        {
            "notifier.test.class-name": "email",
            "notifier.test.template-open": "template_open",
            "notifier.test.template-close": "template_close",
            "notifier.test.send-close": False,
            "notifier.test.server": "test.example.com",
            "notifier.test.port": 587,
            "notifier.test.from": "sender@example.com",
            "notifier.test.to": "receiver@example.com",
            "notifier.test.noverify": True,
        }
    )


def make_module(config=None, sent=None):
    sink = sent if sent is not None else []
    return EmailNotifier(config=config or make_config(), send_mail=sink.append)


OPEN_TEMPLATE = (
    "Subject: [Burrow] Kafka Consumer Lag Alert\n\n"
    "MIME-version: 1.0\n"
    "The Kafka consumer groups you are monitoring are currently showing problems.\n\n"
    "Cluster:  {{ Result.cluster }}\n"
    "Group:    {{ Result.group }}\n"
    "Status:   {{ Result.status }}\n"
    "Complete: {{ Result.complete }}\n"
    "Errors:   {{ Result.partitions|length }} partitions have problems\n"
    "{% for p in Result.partitions %}          {{ p.status }} {{ p.topic }}:{{ p.partition }}\n"
    "{% endfor %}"
)

CLOSE_TEMPLATE = (
    "Subject: [Burrow] Kafka Consumer Healthy\n\n"
    "Content-Type: text/html\n"
    "Consumer is now in a healthy state"
    "Cluster:  {{ Result.cluster }}\n"
    "Group:    {{ Result.group }}\n"
    "Status:   {{ Result.status }}\n"
)


def body_of(message):
    return message.get_payload(decode=True).decode("utf-8")


def test_configure():
    module = make_module()
    module.configure("test", "notifier.test")
    assert module.name == "test"
    assert module.smtp.host == "test.example.com"
    assert module.smtp.port == 587
    assert module.smtp.auth_type == ""
    assert module.sender == "sender@example.com"
    assert module.to == "receiver@example.com"


def test_configure_basic_auth():
    config = make_config()
    config.set("notifier.test.auth-type", "plain")
    config.set("notifier.test.username", "user")
    config.set("notifier.test.password", "password")
    module = make_module(config)
    module.configure("test", "notifier.test")
    assert module.smtp.auth_type == "plain"
    assert module.smtp.username == "user"
    assert module.smtp.password == "password"


def test_configure_cram_md5():
    config = make_config()
    config.set("notifier.test.auth-type", "CramMD5")
    config.set("notifier.test.username", "user")
    config.set("notifier.test.password", "password")
    module = make_module(config)
    module.configure("test", "notifier.test")
    assert module.smtp.auth_type == "crammd5"


def test_configure_unknown_auth():
    config = make_config()
    config.set("notifier.test.auth-type", "kerberos")
    with pytest.raises(ValueError):
        make_module(config).configure("test", "notifier.test")


@pytest.mark.parametrize(
    "key, value",
    [
        ("notifier.test.from", ""),
        ("notifier.test.to", ""),
        ("notifier.test.server", ""),
        ("notifier.test.port", 0),
    ],
)
def test_configure_missing_settings(key, value):
    config = make_config()
    config.set(key, value)
    with pytest.raises(ValueError):
        make_module(config).configure("test", "notifier.test")


def test_no_verify_disables_checks():
    module = make_module()
    module.configure("test", "notifier.test")
    assert module.smtp.ssl_context.verify_mode == ssl.CERT_NONE
    assert module.smtp.ssl_context.check_hostname is False


def test_accept_consumer_group():
    module = make_module()
    module.configure("test", "notifier.test")
    assert module.accept_consumer_group(ConsumerGroupStatus()) is True


def test_notify_open():
    config = make_config()
    config.set("notifier.test.auth-type", "plain")
    config.set("notifier.test.username", "user")
    config.set("notifier.test.password", "password")
    sent = []
    module = make_module(config, sent)
    module.template_open = parse_template_string(OPEN_TEMPLATE)
    module.configure("test", "notifier.test")

    status = ConsumerGroupStatus(status=Status.WARNING, cluster="testcluster", group="testgroup")
    module.notify(status, "testidstring", None, False)

    assert len(sent) == 1
    message = sent[0]
    assert message["Subject"] == "[Burrow] Kafka Consumer Lag Alert"
    assert message["MIME-version"] == "1.0"
    assert message["From"] == "sender@example.com"
    assert message["To"] == "receiver@example.com"
    assert message.get_content_type() == "text/plain"
    body = body_of(message)
    assert "Cluster:  testcluster\n" in body
    assert "Status:   WARN\n" in body
    assert "Errors:   0 partitions have problems\n" in body
    assert "MIME-version" not in body
    assert "Subject" not in body


def test_notify_close():
    sent = []
    module = make_module(sent=sent)
    module.template_close = parse_template_string(CLOSE_TEMPLATE)
    module.configure("test", "notifier.test")

    status = ConsumerGroupStatus(status=Status.OK, cluster="testcluster", group="testgroup")
    module.notify(status, "testidstring", None, True)

    assert len(sent) == 1
    message = sent[0]
    assert message["Subject"] == "[Burrow] Kafka Consumer Healthy"
    assert message.get("MIME-version") is None
    assert message.get_content_type() == "text/html"
    assert module.smtp.auth_type == ""
    assert "Consumer is now in a healthy stateCluster:  testcluster\n" in body_of(message)


def test_notify_without_subject_sends_nothing():
    sent = []
    module = make_module(sent=sent)
    module.template_open = parse_template_string("no subject here {{ Group }}")
    module.configure("test", "notifier.test")
    module.notify(ConsumerGroupStatus(group="testgroup"), "testidstring", None, False)
    assert sent == []


def test_notify_send_failure_is_logged(caplog):
    def failing(message):
        raise OSError("connection refused")

    module = EmailNotifier(config=make_config(), send_mail=failing)
    module.template_open = parse_template_string("Subject: hello\nbody\n")
    module.configure("test", "notifier.test")
    with caplog.at_level(logging.ERROR):
        module.notify(ConsumerGroupStatus(group="testgroup"), "testidstring", None, False)
    assert "failed to send" in caplog.text


def test_create_message_requires_subject():
    module = make_module()
    module.configure("test", "notifier.test")
    with pytest.raises(ValueError):
        module.create_message("Hello\nSubject: late\n")


def test_create_message_multiple_recipients():
    config = make_config()
    config.set("notifier.test.to", "first@example.com,second@example.com")
    module = make_module(config)
    module.configure("test", "notifier.test")
    message = module.create_message("Subject: hi\nline one\n")
    assert message["To"] == "first@example.com, second@example.com"
    assert body_of(message) == "line one\n\n"


def test_create_message_second_subject_is_body():
    module = make_module()
    module.configure("test", "notifier.test")
    message = module.create_message("Subject: first\nSubject: second\n")
    assert message["Subject"] == "first"
    assert body_of(message) == "Subject: second\n\n"


@pytest.mark.parametrize(
    "host, port, expected",
    [
        ("test.example.com", 587, True),
        ("10.0.0.1", 25, True),
        ("", 587, False),
        ("test.example.com", 0, False),
        ("test.example.com", 70000, False),
        ("bad host!", 25, False),
    ],
)
def test_valid_host_port(host, port, expected):
    assert valid_host_port(host, port) is expected