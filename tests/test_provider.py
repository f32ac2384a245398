from __future__ import annotations

from pathlib import Path

import pytest

from pycomrade.llm.factory import load_provider_registry, resolve_provider
from pycomrade.llm.openai_compat import OpenAICompatProvider, parse_tool_calls

YAML = """
providers:
  cloud:
    PYCOMRADE_BASE_URL: https://api.example.com/v1
    PYCOMRADE_MODEL: big-model
    PYCOMRADE_API_KEY: ${PYCOMRADE_TEST_KEY}
  local:
    PYCOMRADE_BASE_URL: http://localhost:11434/v1
    PYCOMRADE_MODEL: small-model
    native_tools: false
"""


def test_registry_expands_env_and_allows_keyless_text_only(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYCOMRADE_TEST_KEY", "sk-test")
    path = tmp_path / "pycomrade.yaml"
    path.write_text(YAML, encoding="utf-8")
    reg = load_provider_registry(path)
    assert reg.names() == ["cloud", "local"]
    assert reg.get("CLOUD").api_key == "sk-test"
    local = reg.get("local")
    assert local.native_tools is False and local.api_key == ""

    provider = resolve_provider("local", model="other-model", yaml_path=path)
    assert provider.model == "other-model"
    assert not provider.supports_native_tools
    assert provider.validate() is None


def test_registry_rejects_missing_fields(tmp_path: Path) -> None:
    path = tmp_path / "pycomrade.yaml"
    path.write_text("providers:\n  cloud:\n    PYCOMRADE_MODEL: m\n", encoding="utf-8")
    with pytest.raises(ValueError, match="PYCOMRADE_BASE_URL"):
        load_provider_registry(path)


def test_unknown_provider_lists_known(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYCOMRADE_TEST_KEY", "k")
    path = tmp_path / "pycomrade.yaml"
    path.write_text(YAML, encoding="utf-8")
    with pytest.raises(ValueError, match="Known providers: cloud, local"):
        load_provider_registry(path).get("mystery")


def test_validate_reports_configuration_problems() -> None:
    assert "API key required" in OpenAICompatProvider(model="m", base_url="http://x", api_key="").validate()
    assert "not enabled" in OpenAICompatProvider(model="m", base_url="http://x", api_key="k", enabled=False).validate()


def test_force_tools_sets_required_tool_choice() -> None:
    p = OpenAICompatProvider(model="m", base_url="http://x", api_key="k")
    tools = [{"type": "function", "function": {"name": "read_file"}}]
    assert p._build_payload([], tools, True, None, None)["tool_choice"] == "required"
    assert p._build_payload([], tools, False, None, None)["tool_choice"] == "auto"
    text_only = OpenAICompatProvider(model="m", base_url="http://x", api_key="", native_tools=False)
    assert "tools" not in text_only._build_payload([], tools, True, None, None)


def test_parse_tool_calls_keeps_raw_on_bad_json() -> None:
    calls = parse_tool_calls([
        {"id": "a", "function": {"name": "read_file", "arguments": '{"path": "x"}'}},
        {"function": {"name": "write_file", "arguments": '{"path": '}},
        {"id": "c", "function": {"name": "git_status", "arguments": ""}},
    ])
    assert calls[0].arguments == {"path": "x"}
    assert calls[1].id == "call_1" and calls[1].arguments is None and calls[1].raw_arguments == '{"path": '
    assert calls[2].arguments == {}
