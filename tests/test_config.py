import pytest

from config.config import Config, PipelineSettings

pytestmark = pytest.mark.unit

ENV_VARS = [
    "OPENAI_API_KEY",
    "LITELLM_BASE_URL",
    "LITELLM_API_KEY",
    "GOOGLE_GEMINI_API_KEY",
    "TOP_K_CONTEXTS",
    "AGENT_MAX_RETRIES",
    "RETRY_BACKOFF_S",
    "PIPELINE_CONCURRENCY_LIMIT",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Config().pipeline_settings()
    assert settings == PipelineSettings()
    assert settings.top_k_contexts == 5
    assert settings.max_retries == 2


def test_env_overrides(clean_env):
    clean_env.setenv("TOP_K_CONTEXTS", "3")
    clean_env.setenv("RETRY_BACKOFF_S", "0.25")
    clean_env.setenv("PIPELINE_CONCURRENCY_LIMIT", "7")

    settings = Config().pipeline_settings()
    assert settings.top_k_contexts == 3
    assert settings.retry_backoff_s == 0.25
    assert settings.pipeline_concurrency_limit == 7


def test_invalid_number_is_rejected(clean_env):
    clean_env.setenv("AGENT_MAX_RETRIES", "two")
    with pytest.raises(ValueError, match="AGENT_MAX_RETRIES"):
        Config()


def test_proxy_key_precedence(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "sk-openai")
    assert Config().openai_api_key() == "sk-openai"

    clean_env.setenv("LITELLM_BASE_URL", "http://localhost:4000")
    assert Config().openai_api_key() == "sk-openai"

    clean_env.setenv("LITELLM_API_KEY", "sk-proxy")
    assert Config().openai_api_key() == "sk-proxy"


def test_validate_reports_missing_credentials(clean_env):
    problems = Config().validate({"openai", "gemini", "mistral"})
    assert len(problems) == 3
    assert any("GOOGLE_GEMINI_API_KEY" in p for p in problems)
    assert any("mistral" in p for p in problems)

    clean_env.setenv("OPENAI_API_KEY", "sk-openai")
    assert Config().validate() == []
