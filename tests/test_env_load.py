import importlib
import os
from pathlib import Path

import config

KEYS = ("BROWSER_SESSIONS_PER_HOUR", "BROWSER_HEADLESS", "SESSION_DIR")


def test_config_reads_dotenv_utf8(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# 日本語コメント\nBROWSER_SESSIONS_PER_HOUR=3\nBROWSER_HEADLESS=false\nSESSION_DIR=セッション\n",
        encoding="utf-8",
    )
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    try:
        importlib.reload(config)
        assert config.BROWSER_SESSIONS_PER_HOUR == 3
        assert config.BROWSER_HEADLESS is False
        assert config.SESSION_DIR == Path("セッション")
    finally:
        # load_dotenv writes straight to os.environ
        for key in KEYS:
            os.environ.pop(key, None)
        monkeypatch.chdir(tmp_path.parent)
        importlib.reload(config)
    assert config.BROWSER_SESSIONS_PER_HOUR == 10
