# groupnotifier

`groupnotifier` sends notifications about consumer group status to outside systems. It can send e-mail or call HTTP
endpoints. Message bodies come from Jinja2 templates. A notification goes out when a problem opens. If you configure
it, another one goes out when the problem closes.

## Installation

```
pip install groupnotifier
```

To run the tests:

```
pip install "groupnotifier[test]"
pytest
```

## Modules

- `groupnotifier.config`: `Config` holds hierarchical settings under dotted, case-insensitive keys such as
  `notifier.mail.threshold`. Values you set take precedence over values from `set_default`. It has the typed getters
  `get_str`, `get_int`, `get_bool`, `get_map` and `get_str_map`, plus `get` and `is_set`.
- `groupnotifier.status`: `Status` (`NOTFOUND`, `OK`, `WARNING`, `ERROR`, `STOP`, `STALL`, `REWIND`, ordered by
  severity; `str()` gives the short name such as `WARN` or `ERR`). It also has the dataclasses `ConsumerOffset`,
  `PartitionStatus` and `ConsumerGroupStatus`. Each dataclass has a `to_dict()` method.
- `groupnotifier.templates`: template parsing (`parse_template_string`, `parse_template_files`, `template_environment`)
  and rendering (`execute_template`). It also has the template helpers and `build_ssl_context`.
- `groupnotifier.base`: `NotifierModule`, the base class of all notifiers. It also has `NullNotifier`, which sends
  nothing and records which of its methods were called (`called_configure`, `called_start`, `called_stop`,
  `called_notify`, `called_accept_consumer_group`).
- `groupnotifier.email_notifier`: `EmailNotifier` sends one e-mail per notification. `SmtpSettings` holds the server
  settings and `valid_host_port` validates a server address.
- `groupnotifier.http_notifier`: `HTTPNotifier` makes one HTTP request per notification.
- `groupnotifier.coordinator`: `Coordinator` builds the modules from configuration, tracks clusters and groups,
  requests evaluations and passes results to the modules. `module_for_class` creates a module from a class name.
  `ApplicationContext`, `StorageRequest`, `EvaluatorRequest` and `ConsumerGroupState` hold the shared state and the
  messages.

## Configuration

Each notifier lives under `notifier.<name>`:

| key | meaning | default |
| --- | --- | --- |
| `class-name` | `email`, `http` or `null` | required |
| `group-allowlist` | regular expression; only groups it matches (by search) are notified | none |
| `group-denylist` | regular expression; groups it matches are skipped | none |
| `interval` | seconds between evaluations of a group; the smallest across modules is used | 60 |
| `send-interval` | minimum seconds between open notifications for a group | `interval` |
| `threshold` | minimum status value that triggers an open notification | 2 |
| `send-once` | send the open notification only once per incident | false |
| `send-close` | send a notification when an incident closes | false |
| `template-open` / `template-close` | template files for the message | close only read with `send-close` |
| `extras` | mapping passed to templates as `Extras` | empty |

The coordinator rejects the keys `group-whitelist` and `group-blacklist` with a `ValueError`. Use `group-allowlist` and
`group-denylist` instead. It also raises `ValueError` for a pattern that does not compile and for an unknown
`class-name`.

### E-mail

`EmailNotifier` reads these keys:

- `server` and `port`, which must be a valid host and a port from 1 to 65535.
- `from` and `to`, both required. `to` may be a comma-separated list.
- `auth-type`, one of `plain`, `crammd5` or empty, compared case-insensitively.
- `username` and `password`.
- `extra-ca`, a CA file added to the system certificates.
- `noverify`, which turns certificate checks off.

Port 465 uses implicit TLS. Other ports use STARTTLS when the server offers it.

The rendered template must begin with a `Subject: ` line. A `Content-Type: ` line sets the body type (default
`text/plain`). A `MIME-version: ` line becomes a header. All other lines form the body. To send messages some other way,
pass `send_mail=` (a callable taking an `email.message.Message`) to the constructor.

### HTTP

`HTTPNotifier` reads these keys:

- `url-open`, required.
- `url-close`, required when `send-close` is on.
- `method-open` and `method-close`, both defaulting to `POST`.
- `timeout` in seconds (default 5).
- `username` and `password`, which add basic auth.
- `headers`, a mapping of extra request headers.
- `extra-ca` and `noverify`.

Requests carry `Content-Type: application/json`. The URLs are templates rendered with the same variables as the body.
Failures and responses outside 2xx are logged, not raised.

## Templates

Templates are Jinja2 and are rendered with these variables:

- `Cluster`
- `Group`
- `ID`
- `Start` (a `datetime` or `None`)
- `Extras`
- `Result`, the `ConsumerGroupStatus` itself, so its fields are accessed as `Result.status`, `Result.partitions` and so
  on.

Undefined names raise an error. These helpers are available both as functions and as filters:

| helper | what it does |
| --- | --- |
| `jsonencoder` | encodes a value as compact JSON |
| `topicsbystatus` | gives status name → distinct topics |
| `partitioncounts` | gives counts for `warn`, `stop`, `stall`, `rewind` and `unknown` |
| `add`, `minus`, `multiply`, `divide` | integer arithmetic; `divide` truncates toward zero |
| `maxlag` | gives the current lag of a partition, or 0 |
| `formattimestamp` | formats a millisecond timestamp in local time with a reference-time layout such as `2006-01-02 15:04:05` |

```python
from datetime import datetime, timezone

from groupnotifier.status import ConsumerGroupStatus, Status
from groupnotifier.templates import execute_template, parse_template_string

template = parse_template_string("{{ ID }} {{ Cluster }} {{ Group }} {{ Result.status }}")
status = ConsumerGroupStatus(cluster="testcluster", group="testgroup", status=Status.OK)
print(execute_template(template, {"foo": "bar"}, status, "testidstring", datetime.now(timezone.utc)))
# testidstring testcluster testgroup OK
```

## Running the coordinator

```python
from groupnotifier.config import Config
from groupnotifier.coordinator import ApplicationContext, Coordinator

config = Config()
config.set("notifier.mail.class-name", "email")
config.set("notifier.mail.server", "smtp.example.com")
config.set("notifier.mail.port", 587)
config.set("notifier.mail.from", "alerts@example.com")
config.set("notifier.mail.to", "oncall@example.com")
config.set("notifier.mail.template-open", "open.tmpl")

app = ApplicationContext(zookeeper=my_lock_provider, zookeeper_root="/burrow", zookeeper_connected=True)
coordinator = Coordinator(app, config)
coordinator.configure()
coordinator.start()
...
coordinator.stop()
```

What the coordinator does:

- Every 60 seconds it puts a `StorageRequest` on `app.storage_channel`. It expects a list of cluster names on the
  request's `reply` queue, then one list of group names per cluster.
- While it holds the lock from `app.zookeeper.new_lock(f"{zookeeper_root}/notifier")`, it puts `EvaluatorRequest`s for
  groups that are due on `app.evaluator_channel`. It stops when `app.zookeeper_expired` is notified.
- Each `ConsumerGroupStatus` that comes back on a request's `reply` queue opens an incident (a new UUID and start time)
  when the status is above `OK`, and closes the incident when the status is `OK`.

## What this package does not do

The package has no storage, no evaluator and no Zookeeper client. The application must supply them through
`ApplicationContext`:

- queues served by its own storage and evaluator;
- a `zookeeper` object whose `new_lock(path)` returns an object with `lock()` and `unlock()`.

There is no command-line program and no configuration file loader. Settings are given to `Config` in code.