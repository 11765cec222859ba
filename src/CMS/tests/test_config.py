# src/CMS/tests/test_config.py
from CMS.core.config import Settings
from CMS.services.email.transports import TransportKind


def test_cors_origins_accept_json_or_csv():
    assert [str(o).rstrip("/") for o in Settings(CORS_ORIGINS='["http://a.test"]').cors_origins] == ["http://a.test"]
    csv = Settings(CORS_ORIGINS="http://a.test, http://b.test").cors_origins
    assert [str(o).rstrip("/") for o in csv] == ["http://a.test", "http://b.test"]


def test_email_config_falls_back_to_console_when_incomplete():
    assert Settings(EMAIL_TRANSPORT="smtp", SMTP_HOST=None).email_config().transport is TransportKind.NONE
    assert Settings(EMAIL_TRANSPORT="carrier-pigeon").email_config().transport is TransportKind.NONE
    cfg = Settings(EMAIL_TRANSPORT="smtp", SMTP_HOST="mail.test", SMTP_PASS="pw").email_config()
    assert cfg.transport is TransportKind.SMTP
    assert cfg.smtp_password == "pw"


def test_max_upload_bytes():
    assert Settings(CMS_MAX_UPLOAD_MB=2).max_upload_bytes == 2 * 1024 * 1024
