"""
Tests for configuration loading.
"""

import json

import pytest

from local_message.core.config import OutboxConfig, ScanGroupConfig, parse_groups


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DATABASE_BACKEND", "SQLITE_PATH", "LOCAL_MESSAGE_SHARD_COUNT",
        "LOCAL_MESSAGE_GROUPS", "LOCAL_MESSAGE_GROUPS_FILE",
        "LOCAL_MESSAGE_WORKER_POOL_SIZE", "LOCAL_MESSAGE_DISPATCH_CONCURRENCY",
        "RABBITMQ_URL", "KAFKA_BOOTSTRAP_SERVERS",
        "OUTBOX_ENABLED", "OUTBOX_PROCESSOR_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestScanGroupConfig:
    """Group validation."""

    def test_defaults(self):
        group = ScanGroupConfig(shards=[2, 0, 2])
        assert group.group_id == "default"
        assert group.shards == [0, 2]
        assert group.fixed_delay_ms == 5000
        assert group.cron is None
        assert group.limit == 100

    def test_house_numbers_alias(self):
        group = ScanGroupConfig.model_validate({"house_numbers": [1, 3], "cron": "* * * * *"})
        assert group.shards == [1, 3]
        assert group.fixed_delay_ms is None

    def test_cron_and_fixed_delay_exclusive(self):
        with pytest.raises(ValueError):
            ScanGroupConfig(shards=[0], cron="* * * * *", fixed_delay_ms=1000)

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            ScanGroupConfig(shards=[0], limit=0)

    def test_negative_shard(self):
        with pytest.raises(ValueError):
            ScanGroupConfig(shards=[-1])

    def test_duplicate_group_ids(self):
        with pytest.raises(ValueError):
            parse_groups([{"group_id": "a", "shards": [0]}, {"group_id": "a", "shards": [1]}])


class TestOutboxConfig:
    """Environment driven settings."""

    def test_defaults(self, clean_env):
        config = OutboxConfig()
        assert config.DATABASE_BACKEND == "sqlite"
        assert config.SHARD_COUNT == 10
        assert config.WORKER_POOL_SIZE == 2
        assert config.DISPATCH_CONCURRENCY == 8
        assert config.OUTBOX_PROCESSOR_ENABLED is True

    def test_default_group_covers_all_shards(self, clean_env):
        clean_env.setenv("LOCAL_MESSAGE_SHARD_COUNT", "4")
        (group,) = OutboxConfig().groups
        assert group.shards == [0, 1, 2, 3]

    def test_groups_from_json(self, clean_env):
        clean_env.setenv("LOCAL_MESSAGE_GROUPS", json.dumps([
            {"group_id": "orders", "house_numbers": [0, 1, 2, 3, 4], "cron": "*/5 * * * * ?"},
            {"group_id": "rest", "shards": [5, 6, 7, 8, 9], "fixed_delay_ms": 3000, "limit": 50},
        ]))
        groups = OutboxConfig().groups
        assert [g.group_id for g in groups] == ["orders", "rest"]
        assert groups[1].limit == 50

    def test_groups_from_yaml(self, clean_env, tmp_path):
        path = tmp_path / "groups.yaml"
        path.write_text(
            "groups:\n"
            "  - group_id: all\n"
            "    house_numbers: [0, 1]\n"
            "    fixed_delay_ms: 1000\n"
        )
        clean_env.setenv("LOCAL_MESSAGE_GROUPS_FILE", str(path))
        clean_env.setenv("LOCAL_MESSAGE_SHARD_COUNT", "2")

        config = OutboxConfig()
        (group,) = config.groups
        assert group.shards == [0, 1]
        assert not [i for i in config.validate() if i.startswith("ERROR")]

    def test_invalid_json(self, clean_env):
        clean_env.setenv("LOCAL_MESSAGE_GROUPS", "[not json")
        config = OutboxConfig()
        with pytest.raises(ValueError):
            config.groups
        assert any("Invalid scan group" in issue for issue in config.validate())

    def test_validate_overlap_is_warning(self, clean_env):
        clean_env.setenv("LOCAL_MESSAGE_SHARD_COUNT", "2")
        clean_env.setenv("LOCAL_MESSAGE_GROUPS", json.dumps([
            {"group_id": "a", "shards": [0, 1]},
            {"group_id": "b", "shards": [1]},
        ]))
        issues = OutboxConfig().validate()
        assert any(i.startswith("WARNING: Shard 1 is scanned by both") for i in issues)
        assert not [i for i in issues if i.startswith("ERROR")]

    def test_validate_shard_out_of_range(self, clean_env):
        clean_env.setenv("LOCAL_MESSAGE_SHARD_COUNT", "2")
        clean_env.setenv("LOCAL_MESSAGE_GROUPS", json.dumps([{"group_id": "a", "shards": [0, 5]}]))
        issues = OutboxConfig().validate()
        assert any("outside 0..1" in i for i in issues)

    def test_validate_missing_file(self, clean_env, tmp_path):
        clean_env.setenv("LOCAL_MESSAGE_GROUPS_FILE", str(tmp_path / "missing.yaml"))
        issues = OutboxConfig().validate()
        assert any("not found" in i for i in issues)

    def test_broker_warnings(self, clean_env):
        issues = OutboxConfig().validate()
        assert any("RABBITMQ_URL" in i for i in issues)
        assert any("KAFKA_BOOTSTRAP_SERVERS" in i for i in issues)
