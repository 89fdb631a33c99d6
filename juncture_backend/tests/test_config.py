from juncture_backend.config import Settings, get_cors_origins


def test_settings_from_env_defaults():
    settings = Settings.from_env({})
    assert settings.cloud_mode is False
    assert settings.database_url == "sqlite:///./juncture.db"
    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.oauth_state_single_use is True
    assert settings.providers["jira"].is_configured is False


def test_settings_from_env_reads_jira_app():
    settings = Settings.from_env({
        "CLOUD_MODE": "true",
        "JUNCTURE_SECRET_KEY": "sk",
        "DEFAULT_JIRA_CLIENT_ID": "cid",
        "DEFAULT_JIRA_CLIENT_SECRET": "secret",
        "DEFAULT_JIRA_SCOPES": "read:jira-work, read:jira-user,",
        "DEFAULT_JIRA_REDIRECT_URI": "http://localhost:3001/cb",
        "DEFAULT_JIRA_SITE_REDIRECT_URI": "http://localhost:3000/",
        "HTTP_TIMEOUT_SECONDS": "5",
        "OAUTH_STATE_SINGLE_USE": "false",
    })
    jira = settings.providers["jira"]
    assert settings.cloud_mode is True
    assert jira.scopes == ["read:jira-work", "read:jira-user"]
    assert jira.site_redirect_uri == "http://localhost:3000"
    assert jira.is_configured is True
    assert settings.http_timeout_seconds == 5.0
    assert settings.oauth_state_single_use is False


def test_bad_timeout_falls_back_to_default():
    assert Settings.from_env({"HTTP_TIMEOUT_SECONDS": "soon"}).http_timeout_seconds == 20.0


def test_cors_origins_never_wildcard():
    origins = get_cors_origins({
        "BACKEND_CORS_ORIGINS": "*,https://app.example.com/path",
        "JUNCTURE_FRONTEND_URL": "https://frontend.example.com",
    })
    assert origins == ["https://app.example.com", "https://frontend.example.com"]
