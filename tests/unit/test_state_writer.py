from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml

from providers.aws import AwsInstanceStateV1, AwsStateParser
from state.errors import (
    StatePersistenceError,
    StateSchemaValidationError,
    StateUninitializedError,
)
from state.loader import StateLoader
from state.models import InstanceEventEnum, InstanceStateV1
from state.parser import AnonymousStateParser
from state.side_effects.base import StateSideEffect
from state.side_effects.local import LocalStateSideEffect
from state.writer import StateWriter, deep_merge


DUMMY_V1_ROOT_DATA_DIR = Path(__file__).resolve().parents[1] / "resources" / "data"
INSTANCE_NAME = "aws-dummy"


async def _get_test_writer(data_dir: Path) -> StateWriter[AwsInstanceStateV1]:
    # Load the dummy state and copy it into a writer using a temp data dir
    loader = StateLoader(side_effect=LocalStateSideEffect(DUMMY_V1_ROOT_DATA_DIR))
    raw = await loader.load_instance_state(INSTANCE_NAME)
    aws_state = AwsStateParser().parse(raw)

    writer: StateWriter[AwsInstanceStateV1] = StateWriter(side_effect=LocalStateSideEffect(data_dir))
    writer.set_state(aws_state)
    await writer.persist_state_now()
    return writer


def _load_persisted(data_dir: Path) -> Dict[str, Any]:
    path = data_dir / "instances" / INSTANCE_NAME / "state.yml"
    return yaml.safe_load(path.read_text(encoding="utf-8"))


class _FailingSideEffect(StateSideEffect):
    """Accepts writes until `fail` is set, then raises on every write."""

    def __init__(self) -> None:
        self.fail = False
        self.records: Dict[str, Dict[str, Any]] = {}

    async def list_instances(self) -> List[str]:
        return sorted(self.records)

    async def _write_record(self, name: str, record: Dict[str, Any]) -> None:
        if self.fail:
            raise StatePersistenceError("disk full")
        self.records[name] = copy.deepcopy(record)

    async def _read_record(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self.records[name])

    async def _delete_record(self, name: str) -> None:
        self.records.pop(name, None)


@pytest.mark.asyncio
async def test_write_on_disk_state_held_in_memory(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    await writer.persist_state_now()

    assert _load_persisted(tmp_path) == writer.clone_state().to_record()


@pytest.mark.asyncio
async def test_update_provision_input(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)
    before = writer.clone_state().to_record()

    await writer.update_provision_input({"disk_size": 999})

    expected = deep_merge(before, {"provision": {"input": {"disk_size": 999}}})
    assert _load_persisted(tmp_path) == expected
    assert writer.get_state().provision.input.disk_size == 999
    # Siblings preserved
    assert writer.get_state().provision.input.instance_type == "g4dn.xlarge"


@pytest.mark.asyncio
async def test_update_provision_input_nested_keeps_siblings(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    await writer.update_provision_input({"ssh": {"user": "admin"}})

    ssh = writer.get_state().provision.input.ssh
    assert ssh.user == "admin"
    assert ssh.private_key_path == "/home/user/.ssh/id_ed25519"


@pytest.mark.asyncio
async def test_update_configuration_input(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)
    before = writer.clone_state().to_record()

    await writer.update_configuration_input({"dummy_config": "bar"})

    expected = deep_merge(before, {"configuration": {"input": {"dummy_config": "bar"}}})
    assert _load_persisted(tmp_path) == expected


@pytest.mark.asyncio
async def test_set_provision_input(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    new_input = {
        **writer.clone_state().provision.input.model_dump(),
        "disk_size": 1234,
        "instance_type": "g5.xlarge",
    }
    await writer.set_provision_input(new_input)

    persisted = _load_persisted(tmp_path)
    assert persisted["provision"]["input"] == new_input
    assert persisted == writer.clone_state().to_record()


@pytest.mark.asyncio
async def test_set_configuration_input(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    new_input = {**writer.clone_state().configuration.input.model_dump(), "dummy_conf": "foo"}
    await writer.set_configuration_input(new_input)

    persisted = _load_persisted(tmp_path)
    assert persisted["configuration"]["input"]["dummy_conf"] == "foo"
    assert persisted == writer.clone_state().to_record()


@pytest.mark.asyncio
async def test_set_configuration_output(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    await writer.set_configuration_output({"data_disk_configured": True})

    persisted = _load_persisted(tmp_path)
    assert persisted["configuration"]["output"]["data_disk_configured"] is True
    assert persisted == writer.clone_state().to_record()


@pytest.mark.asyncio
async def test_set_provision_output(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    output = {"host": "1.2.3.4", "instance_id": "i-123456758"}
    await writer.set_provision_output(output)

    persisted = _load_persisted(tmp_path)
    assert persisted["provision"]["output"] == output
    assert persisted == writer.clone_state().to_record()


@pytest.mark.asyncio
async def test_clear_provision_output(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    await writer.set_provision_output(None)

    assert writer.get_state().provision.output is None
    assert _load_persisted(tmp_path)["provision"]["output"] is None


@pytest.mark.asyncio
async def test_destroy_state(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)

    state_dir = tmp_path / "instances" / INSTANCE_NAME
    state_file = state_dir / "state.yml"
    assert state_file.exists()
    assert state_dir.exists()

    await writer.destroy_state()

    assert not state_file.exists()
    assert not state_dir.exists()
    # Last known state stays inspectable
    assert writer.instance_name() == INSTANCE_NAME


@pytest.mark.asyncio
async def test_add_event_up_to_ten_events(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)
    event_date = datetime(2025, 1, 1, 1, 0, 0, tzinfo=timezone.utc)
    t0 = int(event_date.timestamp() * 1000)
    parser = AnonymousStateParser()

    no_event = parser.parse(_load_persisted(tmp_path))
    assert no_event.events is None

    await writer.add_event(InstanceEventEnum.ProvisionBegin, event_date)

    one_event = parser.parse(_load_persisted(tmp_path))
    assert one_event.events is not None
    assert len(one_event.events) == 1
    assert one_event.events[0].type == InstanceEventEnum.ProvisionBegin

    following = [
        InstanceEventEnum.ProvisionEnd,
        InstanceEventEnum.ConfigurationBegin,
        InstanceEventEnum.ConfigurationEnd,
        InstanceEventEnum.StartBegin,
        InstanceEventEnum.StartEnd,
        InstanceEventEnum.StopBegin,
        InstanceEventEnum.StopEnd,
        InstanceEventEnum.DestroyBegin,
        InstanceEventEnum.DestroyEnd,
    ]
    for i, ev in enumerate(following, start=1):
        await writer.add_event(ev, event_date + timedelta(milliseconds=i))

    ten = parser.parse(_load_persisted(tmp_path))
    assert ten.events is not None
    assert len(ten.events) == 10
    # Insertion order matches timestamp order
    assert [e.timestamp for e in ten.events] == [t0 + i for i in range(10)]
    assert [e.type for e in ten.events] == [InstanceEventEnum.ProvisionBegin, *following]

    # 11th event evicts the oldest one
    await writer.add_event(InstanceEventEnum.ProvisionBegin, event_date + timedelta(milliseconds=10))
    eleven = parser.parse(_load_persisted(tmp_path))
    assert eleven.events is not None
    assert len(eleven.events) == 10
    ordered = sorted(eleven.events, key=lambda e: e.timestamp)
    assert ordered[0].type == InstanceEventEnum.ProvisionEnd
    assert ordered[0].timestamp == t0 + 1
    assert ordered[1].type == InstanceEventEnum.ConfigurationBegin
    assert ordered[9].type == InstanceEventEnum.ProvisionBegin
    assert ordered[9].timestamp == t0 + 10
    assert [e.timestamp for e in ordered] == [t0 + i for i in range(1, 11)]

    # And again
    await writer.add_event(InstanceEventEnum.ProvisionEnd, event_date + timedelta(milliseconds=11))
    twelve = parser.parse(_load_persisted(tmp_path))
    assert twelve.events is not None
    assert len(twelve.events) == 10
    ordered = sorted(twelve.events, key=lambda e: e.timestamp)
    assert ordered[0].type == InstanceEventEnum.ConfigurationBegin
    assert ordered[0].timestamp == t0 + 2
    assert ordered[1].type == InstanceEventEnum.ConfigurationEnd
    assert ordered[9].type == InstanceEventEnum.ProvisionEnd
    assert ordered[9].timestamp == t0 + 11


@pytest.mark.asyncio
async def test_add_event_evicts_smallest_timestamp_not_first_inserted():
    side_effect = _FailingSideEffect()
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=side_effect)
    writer.set_state(_anonymous_state())
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    t0 = int(base.timestamp() * 1000)

    # Out of order: the globally oldest (offset 0) is inserted fifth
    offsets = [5, 6, 7, 8, 0, 1, 2, 3, 4, 9]
    for off in offsets:
        await writer.add_event(InstanceEventEnum.StartBegin, base + timedelta(milliseconds=off))
    assert [e.timestamp - t0 for e in writer.get_state().events] == offsets

    await writer.add_event(InstanceEventEnum.StopEnd, base + timedelta(milliseconds=3))

    events = writer.get_state().events
    assert len(events) == 10
    # Sorted once by eviction, then the new event appended at the end
    assert [e.timestamp - t0 for e in events] == [1, 2, 3, 4, 5, 6, 7, 8, 9, 3]
    assert events[-1].type == InstanceEventEnum.StopEnd


@pytest.mark.asyncio
async def test_add_event_defaults_to_clock():
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=_FailingSideEffect(), clock=lambda: 1700000000.5)
    writer.set_state(_anonymous_state())

    await writer.add_event("stop-begin")

    event = writer.get_state().events[0]
    assert event.type == InstanceEventEnum.StopBegin
    assert event.timestamp == 1700000000500


@pytest.mark.asyncio
async def test_add_event_before_epoch():
    side_effect = _FailingSideEffect()
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=side_effect)
    writer.set_state(_anonymous_state())

    await writer.add_event(InstanceEventEnum.ProvisionBegin, datetime(1969, 12, 31, tzinfo=timezone.utc))

    assert writer.get_state().events[0].timestamp == -86400000
    reloaded = AnonymousStateParser().parse(side_effect.records["x"])
    assert reloaded.events == writer.get_state().events


@pytest.mark.asyncio
async def test_add_event_truncates_sub_millisecond_dates():
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=_FailingSideEffect())
    writer.set_state(_anonymous_state())
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    t0 = int(base.timestamp()) * 1000

    await writer.add_event(InstanceEventEnum.StartBegin, base.replace(microsecond=1500))
    await writer.add_event(InstanceEventEnum.StartEnd, base.replace(microsecond=2500))
    await writer.add_event(InstanceEventEnum.StopBegin, base.replace(microsecond=999999))

    assert [e.timestamp - t0 for e in writer.get_state().events] == [1, 2, 999]


def _anonymous_state() -> InstanceStateV1:
    return AnonymousStateParser().parse(
        {
            "name": "x",
            "provision": {"provider": "dummy", "input": {"size": 1}},
            "configuration": {"input": {}},
        }
    )


@pytest.mark.asyncio
async def test_uninitialized_writer_raises():
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=_FailingSideEffect())

    with pytest.raises(StateUninitializedError):
        writer.get_state()
    with pytest.raises(StateUninitializedError):
        writer.instance_name()
    with pytest.raises(StateUninitializedError):
        writer.clone_state()
    with pytest.raises(StateUninitializedError):
        await writer.set_provision_input({"size": 2})
    with pytest.raises(StateUninitializedError):
        await writer.add_event(InstanceEventEnum.StartBegin)
    with pytest.raises(StateUninitializedError):
        await writer.persist_state_now()
    with pytest.raises(StateUninitializedError):
        await writer.destroy_state()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mutation",
    [
        lambda w: w.set_provision_input({"size": 2}),
        lambda w: w.set_provision_output({"host": "h"}),
        lambda w: w.set_configuration_input({"autostop": {"enable": True}}),
        lambda w: w.set_configuration_output({"done": True}),
        lambda w: w.update_provision_input({"size": 3}),
        lambda w: w.update_configuration_input({"locale": "fr"}),
        lambda w: w.add_event(InstanceEventEnum.ProvisionBegin),
    ],
)
async def test_failed_persist_leaves_state_unchanged(mutation):
    side_effect = _FailingSideEffect()
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=side_effect)
    writer.set_state(_anonymous_state())
    await writer.persist_state_now()
    before = writer.clone_state()
    side_effect.fail = True

    with pytest.raises(StatePersistenceError):
        await mutation(writer)

    assert writer.get_state() == before
    assert writer.clone_state() == before
    assert side_effect.records["x"] == before.to_record()


@pytest.mark.asyncio
async def test_successful_persist_matches_backend():
    side_effect = _FailingSideEffect()
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=side_effect)
    writer.set_state(_anonymous_state())

    await writer.update_provision_input({"a": {"x": 1, "y": 2}})
    await writer.update_provision_input({"a": {"y": 3}})

    assert writer.get_state().provision.input == {"size": 1, "a": {"x": 1, "y": 3}}
    assert side_effect.records["x"] == writer.get_state().to_record()


@pytest.mark.asyncio
async def test_retry_after_failure_starts_from_last_good_state():
    side_effect = _FailingSideEffect()
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=side_effect)
    writer.set_state(_anonymous_state())

    side_effect.fail = True
    with pytest.raises(StatePersistenceError):
        await writer.update_provision_input({"size": 5})

    side_effect.fail = False
    await writer.update_provision_input({"size": 5})
    assert writer.get_state().provision.input == {"size": 5}


@pytest.mark.asyncio
async def test_invalid_typed_update_raises_schema_error(tmp_path: Path):
    writer = await _get_test_writer(tmp_path)
    before = writer.clone_state()

    with pytest.raises(StateSchemaValidationError) as exc_info:
        await writer.update_provision_input({"disk_size": "lots"})

    assert "provision.input.disk_size" in exc_info.value.fields
    assert writer.get_state() == before
    assert _load_persisted(tmp_path) == before.to_record()


def test_clone_state_is_independent():
    writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=_FailingSideEffect())
    writer.set_state(_anonymous_state())

    clone = writer.clone_state()
    clone.provision.input["size"] = 42

    assert writer.get_state().provision.input["size"] == 1


def test_deep_merge_replaces_lists_and_scalars():
    base = {"a": {"x": 1, "y": 2}, "tags": ["a", "b"], "n": 1}

    merged = deep_merge(base, {"a": {"y": 3}, "tags": ["c"], "n": None})

    assert merged == {"a": {"x": 1, "y": 3}, "tags": ["c"], "n": None}
    assert base == {"a": {"x": 1, "y": 2}, "tags": ["a", "b"], "n": 1}
