import pytest

from gatekeeper.core.config import load_config
from gatekeeper.core.errors import ConfigurationError

ENV_VARS = [
    "GATEKEEPER_TOKEN", "GATEKEEPER_CHAT_ID", "DATA_DIR", "STORE_BACKEND",
    "RENEW_AS_SIGHTING", "LOG_LEVEL", "LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        # setenv first so teardown also drops whatever load_dotenv put there
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setenv("GATEKEEPER_TOKEN", "123:abc")
    monkeypatch.setenv("GATEKEEPER_CHAT_ID", "12345")


def test_defaults_without_yaml(tmp_path, credentials):
    config = load_config(str(tmp_path / ".env"), str(tmp_path / "missing.yaml"))

    assert config.telegram_chat_id == "12345"
    assert config.store_backend == "nftables"
    assert config.nft_table == "fw4"
    assert config.renew_as_sighting is False
    assert config.rate_limit_seconds == 60
    assert config.timeouts.approve_ttl == 1800
    assert config.timeouts.auto_deny_after == 300
    assert config.timeouts.auto_approve_ttl == 86400


def test_yaml_values_are_applied(tmp_path, credentials):
    config_file = tmp_path / "gatekeeper.yaml"
    config_file.write_text(
        "timeouts:\n"
        "  approve: 3600\n"
        "  auto_deny: 120\n"
        "events:\n"
        "  renew_as_sighting: true\n"
        "  rate_limit_seconds: 30\n"
        "nftables:\n"
        "  table: gatekeeper\n"
        "  sets:\n"
        "    approved: guests\n"
        "static_leases:\n"
        "  source: file\n"
        "  path: /etc/gatekeeper/leases.yaml\n"
        "telegram:\n"
        "  poll_timeout: 50\n"
    )

    config = load_config(str(tmp_path / ".env"), str(config_file))

    assert config.timeouts.approve_ttl == 3600
    assert config.timeouts.auto_deny_after == 120
    assert config.timeouts.deny_ttl == 1800
    assert config.renew_as_sighting is True
    assert config.rate_limit_seconds == 30
    assert config.nft_table == "gatekeeper"
    assert config.nft_sets == {"approved": "guests"}
    assert config.static_lease_source == "file"
    assert config.poll_timeout == 50


def test_env_file_supplies_credentials(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("GATEKEEPER_TOKEN=999:xyz\nGATEKEEPER_CHAT_ID=777\nSTORE_BACKEND=memory\n")

    config = load_config(str(env_file), str(tmp_path / "missing.yaml"))

    assert config.telegram_bot_token == "999:xyz"
    assert config.store_backend == "memory"


def test_missing_credentials_are_fatal(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / ".env"), str(tmp_path / "missing.yaml"))


def test_unknown_backend_rejected(tmp_path, credentials, monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "iptables")
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / ".env"), str(tmp_path / "missing.yaml"))


def test_invalid_numbers_rejected(tmp_path, credentials):
    config_file = tmp_path / "gatekeeper.yaml"
    config_file.write_text("timeouts:\n  approve: soon\n")
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / ".env"), str(config_file))


def test_invalid_yaml_rejected(tmp_path, credentials):
    config_file = tmp_path / "gatekeeper.yaml"
    config_file.write_text("timeouts: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / ".env"), str(config_file))
