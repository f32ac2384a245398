from __future__ import annotations

import pytest

from pycomrade.session.models import AssistantTurn
from pycomrade.tools.builtin_tools.files import ListDirectoryTool, WriteFileTool
from pycomrade.tools.builtin_tools.git_tools import GitCommitTool
from pycomrade.tools.builtin_tools.web_tools import HttpRequestTool
from pycomrade.tools.validation import ArgumentRepairer, ValidationResult, strip_code_fences, validate_arguments
from tests.helpers import FakeProvider

WRITE = WriteFileTool.spec


def test_missing_content_is_flagged_as_repairable() -> None:
    res = validate_arguments(WRITE, {"path": "index.html"})
    assert not res.valid
    assert res.missing_field == "content"
    assert "MISSING the content parameter" in res.error


def test_missing_path_is_not_repairable() -> None:
    res = validate_arguments(WRITE, {"content": "x"})
    assert not res.valid
    assert res.missing_field is None


def test_git_commit_gets_a_default_message() -> None:
    res = validate_arguments(GitCommitTool.spec, {})
    assert res.valid
    assert res.arguments == {"message": "Auto-commit"}


def test_lenient_coercion() -> None:
    res = validate_arguments(ListDirectoryTool.spec, {"recursive": "true", "max_entries": "20", "path": None})
    assert res.valid
    assert res.arguments == {"recursive": True, "max_entries": 20}


def test_wrong_type_is_reported() -> None:
    res = validate_arguments(ListDirectoryTool.spec, {"recursive": "maybe"})
    assert not res.valid
    assert "recursive must be boolean" in res.error


def test_non_object_arguments() -> None:
    res = validate_arguments(WRITE, ["a.txt"])
    assert not res.valid
    assert "arguments must be an object" in res.error


def test_http_request_method_and_required_url() -> None:
    ok = validate_arguments(HttpRequestTool.spec, {"method": "post", "url": "http://localhost:8080/"})
    assert ok.valid and ok.arguments["method"] == "POST"

    missing = validate_arguments(HttpRequestTool.spec, {"method": "get"})
    assert missing.error == "http_request requires a url parameter"

    bad = validate_arguments(HttpRequestTool.spec, {"method": "FETCH", "url": "http://x"})
    assert "unsupported method" in bad.error


def test_strip_code_fences() -> None:
    assert strip_code_fences("```html\n<p>x</p>\n```") == "<p>x</p>"
    assert strip_code_fences("plain text") == "plain text"


@pytest.mark.asyncio
async def test_repair_asks_provider_and_strips_fences() -> None:
    provider = FakeProvider(repairs=[AssistantTurn(text="```python\nprint(1)\n```")])
    repairer = ArgumentRepairer(provider)
    broken = validate_arguments(WRITE, {"path": "app.py"})
    fixed = await repairer.repair(WRITE, broken, [{"role": "user", "content": "make app.py"}])
    assert fixed.valid
    assert fixed.arguments == {"path": "app.py", "content": "print(1)"}
    assert len(provider.calls_in("repair")) == 1
    assert "app.py" in provider.calls[0]["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_repair_salvages_fenced_block_without_calling_provider() -> None:
    provider = FakeProvider()
    repairer = ArgumentRepairer(provider)
    broken = validate_arguments(WRITE, {"path": "index.html"})
    prose = "Here is the page:\n```html\n<h1>Hello</h1>\n```\nSaving it now."
    fixed = await repairer.repair(WRITE, broken, [], assistant_text=prose)
    assert fixed.valid
    assert fixed.arguments["content"] == "<h1>Hello</h1>"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_repair_gives_up_on_empty_content() -> None:
    repairer = ArgumentRepairer(FakeProvider(repairs=[AssistantTurn(text="  ")]))
    broken = validate_arguments(WRITE, {"path": "a.txt"})
    res = await repairer.repair(WRITE, broken, [])
    assert not res.valid
    assert "could not be recovered" in res.error


@pytest.mark.asyncio
async def test_repair_ignores_other_errors() -> None:
    provider = FakeProvider()
    other = ValidationResult(False, {}, "write_file requires a path parameter")
    assert await ArgumentRepairer(provider).repair(WRITE, other, []) is other
    assert provider.calls == []
