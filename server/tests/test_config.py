# ─────────────────────────────────────────────────────────────────────────────
# Tests — Settings validation, precedence and derived values
# ─────────────────────────────────────────────────────────────────────────────

import pytest
from pydantic import ValidationError

from lorica.config import Settings, load_settings
from lorica.exceptions import ConfigurationError

from .conftest import ACCESS_ID, SECRET_KEY, make_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ACCESS_ID", "SECRET_KEY", "SUMMON_API_URL", "ALLOWED_ORIGINS", "LOG_LEVEL", "PORT"):
        monkeypatch.delenv(f"LORICA_{name}", raising=False)


def _load(**overrides):
    values = {"access_id": ACCESS_ID, "secret_key": SECRET_KEY, "_env_file": None}
    values.update(overrides)
    return load_settings(**values)


class TestRequiredValues:
    def test_missing_access_id(self):
        with pytest.raises(ConfigurationError, match="access ID"):
            _load(access_id="")

    def test_missing_secret_key(self):
        with pytest.raises(ConfigurationError, match="secret key"):
            _load(secret_key="")

    @pytest.mark.parametrize("url", ["http://", "ftp://api.example.org", "https://exa mple.org:notaport"])
    def test_unparseable_upstream(self, url):
        with pytest.raises(ConfigurationError, match="summon_api_url"):
            _load(summon_api_url=url)

    def test_unknown_log_level(self):
        with pytest.raises(ConfigurationError, match="log_level"):
            _load(log_level="chatty")

    @pytest.mark.parametrize(
        "field,value",
        [("request_timeout_seconds", 0), ("rate_limit_per_second", -1), ("rate_limit_burst", 0)],
    )
    def test_non_positive_limits(self, field, value):
        with pytest.raises(ConfigurationError, match=field):
            _load(**{field: value})


class TestDefaults:
    def test_defaults(self):
        settings = _load()
        assert settings.port == 8877
        assert settings.summon_api_url == "https://api.summon.serialssolutions.com"
        assert settings.cors_max_age == 604800
        assert settings.request_timeout_seconds == 10.0
        assert settings.rate_limit_enabled is False
        assert settings.log_level == "WARNING"

    def test_bare_host_gets_https(self):
        settings = _load(summon_api_url="api.summon.serialssolutions.com")
        assert settings.summon_api_url == "https://api.summon.serialssolutions.com"
        assert settings.upstream_host == "api.summon.serialssolutions.com"

    def test_upstream_host_includes_non_default_port(self):
        assert _load(summon_api_url="http://localhost:9000/").upstream_host == "localhost:9000"

    @pytest.mark.parametrize("level,expected", [("warn", "WARNING"), ("TRACE", "DEBUG"), ("info", "INFO")])
    def test_log_level_aliases(self, level, expected):
        assert _load(log_level=level).log_level == expected


class TestPrecedence:
    def test_environment_used_when_not_explicit(self, monkeypatch):
        monkeypatch.setenv("LORICA_ACCESS_ID", "from-env")
        monkeypatch.setenv("LORICA_SECRET_KEY", "env-secret")
        settings = load_settings(_env_file=None)
        assert settings.access_id == "from-env"
        assert settings.secret_key.get_secret_value() == "env-secret"

    def test_explicit_beats_environment(self, monkeypatch):
        monkeypatch.setenv("LORICA_ALLOWED_ORIGINS", "http://env.com")
        assert _load(allowed_origins="http://explicit.com").allowed_origins == "http://explicit.com"

    def test_environment_beats_default(self, monkeypatch):
        monkeypatch.setenv("LORICA_PORT", "9999")
        assert _load().port == 9999


class TestImmutability:
    def test_frozen(self):
        settings = make_settings()
        with pytest.raises(ValidationError):
            settings.access_id = "changed"  # type: ignore[misc]

    def test_secret_never_rendered(self):
        settings = make_settings()
        assert SECRET_KEY not in repr(settings)
        assert "secret_key" not in settings.describe()


class TestOriginAllowList:
    def test_wildcard(self):
        assert make_settings(allowed_origins="*").origin_allow_list is None

    def test_parsed(self):
        settings = make_settings(allowed_origins="http://a.com; http://b.com;;")
        assert settings.origin_allow_list == ("http://a.com", "http://b.com")

    def test_empty(self):
        assert make_settings(allowed_origins="").origin_allow_list == ()


def test_settings_constructed_directly_still_validates():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, access_id="", secret_key="x")
