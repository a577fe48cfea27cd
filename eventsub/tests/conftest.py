import pytest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for key in ("EVENTSUB_CONFIG_FILE", "EVENTSUB_DEFAULT_URL", "EVENTSUB_LOG_LEVEL", "EVENTSUB_TRANSPORT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
