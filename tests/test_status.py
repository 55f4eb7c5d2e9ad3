import json

from groupnotifier.status import ConsumerGroupStatus, ConsumerOffset, PartitionStatus, Status


def _partition(status=Status.WARNING):
    return PartitionStatus(
        topic="topicA",
        partition=3,
        status=status,
        start=ConsumerOffset(offset=10, timestamp=1000, lag=0),
        end=ConsumerOffset(offset=20, timestamp=2000, lag=5),
        current_lag=5,
    )


def test_ok_prints_short_name():
    status = ConsumerGroupStatus(cluster="c", group="g", status=Status(1))
    assert status.status is Status.OK
    assert str(status.status) == "OK"
    assert f"{status.status}" == "OK"
    assert status.to_dict()["status"] == "OK"


def test_severity_ordering():
    assert Status.NOTFOUND < Status.OK < Status.WARNING < Status.ERROR
    assert Status(1) is Status.OK
    assert Status(2) is Status.WARNING


def test_every_status_has_distinct_name():
    names = [
        ConsumerGroupStatus(cluster="c", group="g", status=s).to_dict()["status"]
        for s in Status
    ]
    assert names == [str(s) for s in Status]
    assert len(set(names)) == len(Status)


def test_default_group_status_is_not_found():
    status = ConsumerGroupStatus()
    assert status.status is Status.NOTFOUND
    assert status.partitions == []


def test_offset_to_dict_keys():
    offset = ConsumerOffset(offset=10, timestamp=1000, observed_at=1001, lag=4)
    assert offset.to_dict() == {"offset": 10, "timestamp": 1000, "observedAt": 1001, "lag": 4}


def test_partition_to_dict_nests_offsets():
    data = _partition().to_dict()
    assert data["start"] == _partition().start.to_dict()
    assert data["end"]["offset"] == 20
    assert data["status"] == str(Status.WARNING)
    assert data["topic"] == "topicA"


def test_group_to_dict_round_trips_through_json():
    group = ConsumerGroupStatus(
        cluster="testcluster",
        group="testgroup",
        status=Status.ERROR,
        partitions=[_partition()],
        total_partitions=1,
        max_lag=_partition(),
        total_lag=5,
    )
    data = json.loads(json.dumps(group.to_dict()))
    assert data == group.to_dict()
    assert data["partition_count"] == 1
    assert data["maxlag"]["current_lag"] == 5
    assert data["partitions"][0]["partition"] == 3


def test_group_without_maxlag():
    data = ConsumerGroupStatus(cluster="c", group="g", status=Status.OK).to_dict()
    assert data["maxlag"] is None
    assert data["status"] == "OK"