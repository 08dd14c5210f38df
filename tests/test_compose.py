"""Tests for configuration resolution in compose.py."""

import os

import pytest

from ollama_gate.compose import build_gateway_config, load_env_file

ENV_KEYS = (
    "OLLAMA_MODEL",
    "OLLAMA_URL",
    "HOST",
    "PORT",
    "DOWNLOAD_TIMEOUT",
    "APP_URL",
    "OLLAMA_GATE_STATE_FILE",
    "OLLAMA_GATE_DEBUG_DIR",
    "OLLAMA_GATE_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestBuildGatewayConfig:
    """Tests for arg > env > file > default resolution."""

    async def test_defaults(self):
        config = await build_gateway_config()

        assert config.model == "llama2"
        assert config.backend_url == "http://localhost:11434"
        assert config.port == 8080
        assert config.download_timeout == 60
        assert config.app_url == ""
        assert config.debug_dir is None

    async def test_env_over_default(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_MODEL", "qwen3:0.6b")
        monkeypatch.setenv("OLLAMA_URL", "http://ollama:11434")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("DOWNLOAD_TIMEOUT", "15")

        config = await build_gateway_config()

        assert config.model == "qwen3:0.6b"
        assert config.backend_url == "http://ollama:11434"
        assert config.port == 9000
        assert config.download_timeout == 15

    async def test_arg_over_env(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_MODEL", "from-env")

        config = await build_gateway_config(model="from-arg", port=7000)

        assert config.model == "from-arg"
        assert config.port == 7000

    async def test_file_below_env(self, tmp_path, monkeypatch):
        config_file = tmp_path / "gate.yaml"
        config_file.write_text(
            "model: from-file\n"
            "backend_url: http://file:11434\n"
            "app_url: http://app.file\n"
            "state_file: ''\n"
        )
        monkeypatch.setenv("OLLAMA_URL", "http://env:11434")

        config = await build_gateway_config(config_file=str(config_file))

        assert config.model == "from-file"
        assert config.backend_url == "http://env:11434"
        assert config.app_url == "http://app.file"
        # Empty file values fall through to the default
        assert config.state_file == "data/progress_state.json"

    async def test_config_path_from_env(self, tmp_path, monkeypatch):
        config_file = tmp_path / "gate.yaml"
        config_file.write_text("port: 8181\n")
        monkeypatch.setenv("OLLAMA_GATE_CONFIG", str(config_file))

        config = await build_gateway_config()

        assert config.port == 8181

    async def test_missing_config_file(self, tmp_path):
        config = await build_gateway_config(config_file=str(tmp_path / "nope.yaml"))

        assert config.model == "llama2"

    async def test_non_mapping_config_file(self, tmp_path):
        config_file = tmp_path / "gate.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            await build_gateway_config(config_file=str(config_file))

    async def test_invalid_integer_falls_back(self, monkeypatch):
        monkeypatch.setenv("DOWNLOAD_TIMEOUT", "soon")

        config = await build_gateway_config()

        assert config.download_timeout == 60

    async def test_debug_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OLLAMA_GATE_DEBUG_DIR", str(tmp_path))

        config = await build_gateway_config()

        assert config.debug_dir == str(tmp_path)


class TestLoadEnvFile:
    def test_missing_file(self, tmp_path):
        assert load_env_file(tmp_path / ".env") is False

    def test_does_not_override(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("OLLAMA_MODEL=from-dotenv\nOLLAMA_URL=http://dotenv:11434\n")
        monkeypatch.setenv("OLLAMA_MODEL", "from-shell")
        # Keep values loaded from the file out of the real environment
        monkeypatch.setattr(os, "environ", os.environ.copy())

        assert load_env_file(env_file) is True
        assert os.environ["OLLAMA_MODEL"] == "from-shell"
        assert os.environ["OLLAMA_URL"] == "http://dotenv:11434"
