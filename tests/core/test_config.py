import pytest

from kubemeter_core.config import Config, get_config
from kubemeter_core.stores import SqliteMonitorStore, get_store_bundle
from kubemeter_core.connectors import PrometheusTrafficSource


@pytest.mark.core
def test_defaults():
    config = Config.from_env()
    assert config.concurrent_limit == 1000
    assert config.period_seconds == 60
    assert config.owner_label_key == "user.sealos.io/owner"
    assert config.backup_claim_name == "kb-backup-data"
    assert config.traffic_backend == "none"
    assert not config.traffic_enabled
    assert not config.object_storage_enabled
    assert config.retention_delete_days == 30


@pytest.mark.core
def test_overrides(monkeypatch):
    monkeypatch.setenv("CONCURRENT_LIMIT", "16")
    monkeypatch.setenv("TRAFFIC_BACKEND", "Prometheus")
    monkeypatch.setenv("PROM_URL", "http://prometheus:9090")
    monkeypatch.setenv("OBJECT_STORAGE_URI", "s3://")
    monkeypatch.setenv("GPU_REFRESH_BACKOFF_SECONDS", "0.25")
    config = Config.from_env()
    assert config.concurrent_limit == 16
    assert config.traffic_backend == "prometheus"
    assert config.traffic_enabled
    assert config.object_storage_enabled
    assert config.gpu_refresh_backoff_seconds == 0.25


@pytest.mark.core
@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("CONCURRENT_LIMIT", "0"),
        ("CONCURRENT_LIMIT", "many"),
        ("METER_PERIOD_SECONDS", "-5"),
        ("TRAFFIC_BACKEND", "kafka"),
        ("TRAFFIC_BACKEND", "prometheus"),
        ("OBJECT_STORAGE_URI", "s3://"),
        ("GPU_REFRESH_BACKOFF_SECONDS", "soon"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Config.from_env()


@pytest.mark.core
def test_store_bundle_sqlite_shares_monitor_db(monkeypatch, tmp_path):
    monkeypatch.setenv("MONITOR_DB_PATH", str(tmp_path / "monitor.db"))
    monkeypatch.setenv("TRAFFIC_BACKEND", "sqlite")
    bundle = get_store_bundle(Config.from_env())
    assert isinstance(bundle.monitor, SqliteMonitorStore)
    assert bundle.traffic is bundle.monitor


@pytest.mark.core
def test_store_bundle_separate_traffic_db(monkeypatch, tmp_path):
    monkeypatch.setenv("MONITOR_DB_PATH", str(tmp_path / "monitor.db"))
    monkeypatch.setenv("TRAFFIC_BACKEND", "sqlite")
    monkeypatch.setenv("TRAFFIC_DB_PATH", str(tmp_path / "traffic.db"))
    bundle = get_store_bundle(Config.from_env())
    assert bundle.traffic is not bundle.monitor
    assert bundle.traffic.path.endswith("traffic.db")


@pytest.mark.core
def test_store_bundle_prometheus_and_none(monkeypatch, tmp_path):
    monkeypatch.setenv("MONITOR_DB_PATH", str(tmp_path / "monitor.db"))
    assert get_store_bundle(Config.from_env()).traffic is None
    monkeypatch.setenv("TRAFFIC_BACKEND", "prometheus")
    monkeypatch.setenv("PROM_URL", "http://prometheus:9090")
    bundle = get_store_bundle(Config.from_env())
    assert isinstance(bundle.traffic, PrometheusTrafficSource)


@pytest.mark.core
def test_get_config_is_cached(monkeypatch):
    first = get_config()
    monkeypatch.setenv("CONCURRENT_LIMIT", "8")
    assert get_config() is first
    get_config.cache_clear()
    assert get_config().concurrent_limit == 8
