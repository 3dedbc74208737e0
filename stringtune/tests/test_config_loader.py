import logging

import pytest

from stringtune.pipeline.config_loader import ConfigLoader, UnknownConfigKeyError, cfg_get, parse_override


@pytest.fixture
def toml_file(tmp_path):
    path = tmp_path / "rig.toml"
    path.write_text(
        'preset = "bass"\n'
        "threshold = 0.2\n"
        "\n"
        "[filters]\n"
        "notch_60 = true\n"
    )
    return str(path)


class TestConfigLoader:
    def test_preset_only(self):
        loader = ConfigLoader()
        cfg = loader.load(preset="classical")
        assert cfg.preset == "classical"
        assert cfg.smoothing_alpha == 0.4
        assert loader.provenance == {"preset": "preset:classical"}

    def test_default_preset(self):
        assert ConfigLoader().load().preset == "acoustic"

    def test_unknown_preset_warns_once(self, caplog):
        with caplog.at_level(logging.WARNING):
            cfg = ConfigLoader().load(preset="theremin")
        assert cfg.preset == "acoustic"
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "theremin" in warnings[0].getMessage()

    def test_file_layer(self, toml_file):
        loader = ConfigLoader()
        cfg = loader.load(toml_file)
        assert cfg.preset == "bass"
        assert cfg.freq_min == 28.0
        assert cfg.threshold == 0.2
        assert cfg.filters.notch_60 is True
        assert loader.provenance["threshold"] == "file:rig.toml"
        assert loader.provenance["filters.notch_60"] == "file:rig.toml"

    def test_caller_preset_wins_over_file(self, toml_file):
        cfg = ConfigLoader().load(toml_file, preset="acoustic")
        assert cfg.preset == "acoustic"
        assert cfg.threshold == 0.2

    def test_overrides_win(self, toml_file):
        loader = ConfigLoader()
        cfg = loader.load(toml_file, overrides=[("threshold", 0.1), ("features.agc", True)])
        assert cfg.threshold == 0.1
        assert cfg.features.agc is True
        assert loader.provenance["threshold"] == "override"
        assert cfg_get(cfg, "features.agc") is True

    def test_unknown_file_key(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("bogus = 1\n")
        with pytest.raises(UnknownConfigKeyError, match="bogus"):
            ConfigLoader().load(str(path))

    @pytest.mark.parametrize("key", ["filters.nope", "nope.x", "filters"])
    def test_unknown_override_key(self, key):
        with pytest.raises(UnknownConfigKeyError):
            ConfigLoader().load(overrides=[(key, 1)])

    def test_section_must_be_table(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("filters = 3\n")
        with pytest.raises(TypeError):
            ConfigLoader().load(str(path))

    def test_invalid_result_rejected(self):
        with pytest.raises(ValueError):
            ConfigLoader().load(overrides=[("freq_min", 2000.0)])

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader().load(str(tmp_path / "missing.toml"))


class TestParseOverride:
    def test_typed_values(self):
        assert parse_override("features.agc=true") == ("features.agc", True)
        assert parse_override("threshold = 0.2") == ("threshold", 0.2)
        assert parse_override('estimator="mcleod"') == ("estimator", "mcleod")

    def test_bare_word_stays_string(self):
        assert parse_override("estimator=mcleod") == ("estimator", "mcleod")

    def test_missing_equals(self):
        with pytest.raises(ValueError):
            parse_override("threshold")
