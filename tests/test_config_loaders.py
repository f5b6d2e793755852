import pytest
import yaml

from src.config import load_config
from src.config.loaders import expand_env_refs, load_yaml_with_env_expansion, resolve_config_path
from src.errors import ValidationError
from src.languages import LanguageCode


def test_expand_env_refs_defaults_and_values(monkeypatch):
    monkeypatch.setenv("SAMVAAD_TEST_HOST", "dhruva.internal")
    monkeypatch.delenv("SAMVAAD_TEST_MISSING", raising=False)
    monkeypatch.setenv("SAMVAAD_TEST_EMPTY", "")

    text = "a=${SAMVAAD_TEST_HOST} b=${SAMVAAD_TEST_MISSING:-fallback} c=${SAMVAAD_TEST_EMPTY:=x} d=${SAMVAAD_TEST_MISSING}"

    assert expand_env_refs(text) == "a=dhruva.internal b=fallback c=x d=${SAMVAAD_TEST_MISSING}"


def test_resolve_config_path_prefers_env(monkeypatch, tmp_path):
    target = tmp_path / "custom.yaml"
    monkeypatch.setenv("SAMVAAD_CONFIG", str(target))

    assert resolve_config_path() == str(target)
    assert resolve_config_path("/etc/explicit.yaml") == "/etc/explicit.yaml"


def test_load_yaml_empty_document_is_empty_dict(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("# nothing here\n", encoding="utf-8")

    assert load_yaml_with_env_expansion(str(path)) == {}


def test_load_yaml_rejects_non_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(yaml.YAMLError):
        load_yaml_with_env_expansion(str(path))


def test_load_config_reads_yaml_with_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SAMVAAD_TEST_KEY", "ulca-secret")
    path = tmp_path / "samvaad.yaml"
    path.write_text(
        "\n".join(
            [
                "provider:",
                '  api_key: "${SAMVAAD_TEST_KEY:-}"',
                '  user_id: "officer-desk-1"',
                "retry:",
                "  max_retries: 2",
                "  retry_delay_ms: 250",
                "conversation:",
                "  citizen_language: TA",
                "server:",
                '  cors_origins: "http://a.example, http://b.example"',
            ]
        ),
        encoding="utf-8",
    )

    config = load_config(str(path), load_env=False)

    assert config.provider.api_key == "ulca-secret"
    assert config.provider.user_id == "officer-desk-1"
    assert config.retry.max_retries == 2
    assert config.retry.retry_delay_sec == 0.25
    assert config.conversation.citizen_language is LanguageCode.TAMIL
    assert config.conversation.officer_language is LanguageCode.ENGLISH
    assert config.server.cors_origins == ["http://a.example", "http://b.example"]


def test_load_config_falls_back_to_provider_env(monkeypatch, tmp_path):
    monkeypatch.setenv("BHASHINI_API_KEY", "from-env")
    monkeypatch.setenv("BHASHINI_USER_ID", "user-env")
    path = tmp_path / "samvaad.yaml"
    path.write_text('provider:\n  api_key: ""\n', encoding="utf-8")

    config = load_config(str(path), load_env=False)

    assert config.provider.api_key == "from-env"
    assert config.provider.user_id == "user-env"


def test_load_config_defaults_when_default_file_missing(monkeypatch, tmp_path):
    monkeypatch.setenv("SAMVAAD_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("BHASHINI_API_KEY", raising=False)

    config = load_config(load_env=False)

    assert config.retry.max_retries == 1
    assert config.retry.retry_delay_ms == 1000
    assert config.connectivity.initial_online is True
    assert config.conversation.adopt_detected_language is False


def test_load_config_explicit_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"), load_env=False)


def test_unsupported_language_in_config_is_rejected(tmp_path):
    path = tmp_path / "samvaad.yaml"
    path.write_text("conversation:\n  officer_language: fr\n", encoding="utf-8")

    with pytest.raises((ValidationError, ValueError)):
        load_config(str(path), load_env=False)


def test_bundled_config_file_loads(monkeypatch):
    monkeypatch.delenv("SAMVAAD_CONFIG", raising=False)
    for name in ("BHASHINI_API_KEY", "BHASHINI_USER_ID", "SAMVAAD_PROBE_INTERVAL_SEC", "UVICORN_PORT"):
        monkeypatch.delenv(name, raising=False)

    config = load_config(load_env=False)

    assert config.provider.pipeline_id == "64392f96daac500b55c543cd"
    assert config.server.port == 8000
    assert config.connectivity.probe_interval_sec == 0
