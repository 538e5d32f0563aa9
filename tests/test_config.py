"""Tests for pipeline configuration defaults and TOML loading."""

import pytest

from storygraph.config import (
    PipelineConfig,
    RetryConfig,
    SegmentationConfig,
    load_pipeline_config,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.delenv("STORYGRAPH_CONFIG", raising=False)


class TestDefaults:
    def test_pipeline_defaults(self):
        config = PipelineConfig()

        assert config.registry_limit == 50
        assert config.retry.max_attempts == 3
        assert config.segmentation.hard_max_size == 8000
        assert config.llm.host == "http://localhost:11434"

    def test_config_is_frozen(self):
        with pytest.raises(Exception):  # Pydantic ValidationError
            PipelineConfig().registry_limit = 10


class TestRetryConfig:
    def test_delay_for_each_attempt(self):
        retry = RetryConfig()

        assert [retry.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_for_reuses_last_delay(self):
        assert RetryConfig(delays=(0.5,)).delay_for(5) == 0.5

    def test_no_delays(self):
        assert RetryConfig(delays=()).delay_for(0) == 0.0


class TestSegmentationConfig:
    def test_sizes_must_be_ordered(self):
        with pytest.raises(ValueError, match="target_min_size"):
            SegmentationConfig(target_min_size=7000, target_max_size=6000)

    def test_max_above_hard_max_rejected(self):
        with pytest.raises(ValueError):
            SegmentationConfig(target_max_size=9000)


class TestLoadPipelineConfig:
    """Tests for load_pipeline_config."""

    def test_no_files_gives_defaults(self, tmp_path):
        assert load_pipeline_config([tmp_path / "missing.toml"]) == PipelineConfig()

    def test_reads_sections(self, tmp_path):
        path = tmp_path / "storygraph.toml"
        path.write_text(
            "[pipeline]\n"
            "registry_limit = 40\n"
            "\n"
            "[segmentation]\n"
            "target_max_size = 5000\n"
            "\n"
            "[retry]\n"
            "delays = [0.5, 1.0]\n"
            "\n"
            "[llm]\n"
            'model = "mistral"\n'
        )

        config = load_pipeline_config([path])

        assert config.registry_limit == 40
        assert config.segmentation.target_max_size == 5000
        assert config.retry.delays == (0.5, 1.0)
        assert config.llm.model == "mistral"
        assert config.llm.embedding_model == "nomic-embed-text"

    def test_first_existing_file_wins(self, tmp_path):
        first = tmp_path / "first.toml"
        second = tmp_path / "second.toml"
        first.write_text("[pipeline]\nregistry_limit = 10\n")
        second.write_text("[pipeline]\nregistry_limit = 20\n")

        assert load_pipeline_config([tmp_path / "absent.toml", first, second]).registry_limit == 10

    def test_invalid_file_is_skipped(self, tmp_path):
        broken = tmp_path / "broken.toml"
        broken.write_text("[pipeline\nregistry_limit = ")
        invalid = tmp_path / "invalid.toml"
        invalid.write_text("[pipeline]\nregistry_limit = -1\n")
        good = tmp_path / "good.toml"
        good.write_text("[pipeline]\nregistry_limit = 7\n")

        assert load_pipeline_config([broken, invalid, good]).registry_limit == 7

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text("[pipeline]\nbroadcast_progress = false\n")
        monkeypatch.setenv("STORYGRAPH_CONFIG", str(path))

        assert load_pipeline_config().broadcast_progress is False

    def test_ollama_host_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "storygraph.toml"
        path.write_text('[llm]\nhost = "http://file:11434"\nmodel = "mistral"\n')
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")

        config = load_pipeline_config([path])

        assert config.llm.host == "http://gpu-box:11434"
        assert config.llm.model == "mistral"
