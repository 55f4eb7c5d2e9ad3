import re

import pytest

from groupnotifier.base import NotifierModule, NullNotifier
from groupnotifier.config import Config
from groupnotifier.status import ConsumerGroupStatus, Status


def make_status():
    return ConsumerGroupStatus(cluster="testcluster", group="testgroup", status=Status.WARNING)


def test_notifier_module_is_abstract():
    with pytest.raises(TypeError):
        NotifierModule()


def test_subclass_defaults():
    class Recording(NotifierModule):
        def notify(self, status, event_id, start_time, state_good):
            self.sent = (status.group, event_id, state_good)

    module = Recording()
    module.configure("mine", "notifier.mine")
    assert module.name == "mine"
    assert module.accept_consumer_group(make_status()) is True
    module.notify(make_status(), "testidstring", None, False)
    assert module.sent == ("testgroup", "testidstring", False)


def test_null_configure_sets_name_and_flag():
    module = NullNotifier()
    assert module.called_configure is False
    module.configure("test", "notifier.test")
    assert module.name == "test"
    assert module.called_configure is True


def test_null_start_stop_flags():
    module = NullNotifier()
    module.start()
    assert module.called_start is True
    assert module.called_stop is False
    module.stop()
    assert module.called_stop is True


def test_null_accept_consumer_group():
    module = NullNotifier()
    assert module.accept_consumer_group(make_status()) is True
    assert module.called_accept_consumer_group is True


def test_null_notify_flag():
    module = NullNotifier()
    assert module.called_notify is False
    module.notify(make_status(), "testidstring", None, True)
    assert module.called_notify is True


def test_constructor_keeps_settings():
    allow = re.compile(".*")
    config = Config({"notifier.test.threshold": 1})
    module = NullNotifier(
        "app", config, group_allowlist=allow, extras={"foo": "bar"}
    )
    assert module.app == "app"
    assert module.config is config
    assert module.group_allowlist is allow
    assert module.group_denylist is None
    assert module.extras == {"foo": "bar"}
    assert module.template_open is None
    assert module.template_close is None