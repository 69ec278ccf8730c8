import json

import pytest

from stallview import config


class TestViewerSettings:

    def test_defaults_when_file_is_empty(self, data_dirs):
        settings = config.load_viewer_settings()
        assert settings == config.ViewerSettings()
        assert settings.autoplay_interval_s == 2.0
        assert settings.default_mode == "single-view"

    def test_overrides(self, data_dirs):
        config.VIEWER_JSON.write_text(
            json.dumps({"autoplay_interval_ms": 500, "default_mode": "paged", "session_idle_s": 60, "session_prune_s": 5}),
            encoding="utf-8",
        )
        settings = config.load_viewer_settings()
        assert settings.autoplay_interval_s == 0.5
        assert settings.default_mode == "paged"
        assert settings.session_idle_s == 60.0
        assert settings.session_prune_s == 5.0
        assert settings.store_timeout_s == config.DEFAULT_STORE_TIMEOUT_S

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[]",
            json.dumps({"autoplay_interval_ms": 0}),
            json.dumps({"store_timeout_s": "soon"}),
            json.dumps({"autoplay_interval_ms": True}),
            json.dumps({"default_mode": 3}),
            json.dumps({"session_prune_s": -1}),
        ],
    )
    def test_invalid_files_are_rejected(self, data_dirs, content):
        config.VIEWER_JSON.write_text(content, encoding="utf-8")
        with pytest.raises(RuntimeError):
            config.load_viewer_settings()


class TestCatalogFile:

    def test_created_empty(self, data_dirs):
        assert config.CATALOG_JSON.exists()
        assert config.load_catalog() == []

    def test_must_be_a_list(self, data_dirs):
        config.CATALOG_JSON.write_text("{}", encoding="utf-8")
        with pytest.raises(RuntimeError):
            config.load_catalog()
