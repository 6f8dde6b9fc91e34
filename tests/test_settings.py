import pytest
from pydantic import ValidationError

from voice_relay.config.constants import DEFAULT_QUEUE_CAPACITY
from voice_relay.config.settings import RelayConfig


def test_from_env_open_agent(relay_env):
    config = RelayConfig.from_env()

    assert config.agent_id == "agent_test"
    assert config.api_key is None
    assert config.requires_auth is False
    assert config.queue_capacity == DEFAULT_QUEUE_CAPACITY


def test_from_env_reads_tuning_values(relay_env, monkeypatch):
    monkeypatch.setenv("RELAY_QUEUE_CAPACITY", "50")
    monkeypatch.setenv("RELAY_PUSH_TIMEOUT", "0.2")
    monkeypatch.setenv("RELAY_STOP_TIMEOUT", "2.5")

    config = RelayConfig.from_env()

    assert config.queue_capacity == 50
    assert config.push_timeout == pytest.approx(0.2)
    assert config.stop_timeout == pytest.approx(2.5)


def test_from_env_authenticated_agent(relay_env, monkeypatch):
    monkeypatch.setenv("ELEVENLABS_REQUIRES_AUTH", "True")
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-key")

    config = RelayConfig.from_env()

    assert config.requires_auth is True
    assert config.api_key == "xi-key"


def test_auth_without_api_key_is_rejected(relay_env, monkeypatch):
    monkeypatch.setenv("ELEVENLABS_REQUIRES_AUTH", "yes")

    with pytest.raises(ValidationError):
        RelayConfig.from_env()


def test_missing_agent_id_is_rejected(monkeypatch):
    monkeypatch.delenv("ELEVENLABS_AGENT_ID", raising=False)

    with pytest.raises(ValidationError):
        RelayConfig.from_env()


@pytest.mark.parametrize("field", ["queue_capacity", "poll_interval", "stop_timeout"])
def test_non_positive_tuning_values_are_rejected(field):
    with pytest.raises(ValidationError):
        RelayConfig(agent_id="agent_test", **{field: 0})
