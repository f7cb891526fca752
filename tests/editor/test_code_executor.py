"""
Tests for the editor-side PythonCodeExecutor.
"""

import logging

import pytest

from bridge.editor.code_executor import PythonCodeExecutor, SCRIPT_LOGGER_NAME


@pytest.fixture
def executor():
    return PythonCodeExecutor(namespace={"scene": {"objects": ["Player", "Main Camera"]}})


def test_trailing_expression_is_the_result(executor):
    outcome = executor.execute("x = 2\nx * 21")
    assert outcome["executionSuccess"] is True
    assert outcome["result"] == 42
    assert outcome["errors"] == []


def test_result_variable_used_without_trailing_expression(executor):
    outcome = executor.execute("result = len(scene['objects'])")
    assert outcome["result"] == 2


def test_namespace_persists_between_commands(executor):
    executor.execute("counter = 1")
    assert executor.execute("counter + 1")["result"] == 2


def test_stdout_captured_as_logs(executor):
    outcome = executor.execute("print('first')\nprint('second')")
    assert outcome["logs"] == ["first", "second"]


def test_warnings_captured(executor):
    outcome = executor.execute("import warnings\nwarnings.warn('deprecated thing')")
    assert outcome["warnings"] == ["deprecated thing"]
    assert outcome["executionSuccess"] is True


def test_compilation_error(executor):
    outcome = executor.execute("def broken(:\n    pass")
    assert outcome["executionSuccess"] is False
    assert outcome["errorDetails"]["type"] == "CompilationError"
    assert outcome["errorDetails"]["message"].startswith("Compilation failed:\n<bridge-command>:1:")
    assert outcome["errors"] == [outcome["errorDetails"]["message"]]


def test_runtime_error(executor):
    outcome = executor.execute("print('before')\n1 / 0")
    assert outcome["executionSuccess"] is False
    assert outcome["errorDetails"]["type"] == "ZeroDivisionError"
    assert "ZeroDivisionError" in outcome["errorDetails"]["stackTrace"]
    assert outcome["logs"] == ["before"]


def test_non_serializable_result_is_repr(executor):
    outcome = executor.execute("object")
    assert outcome["result"] == repr(object)


def test_log_helper_writes_tagged_line(executor, caplog):
    with caplog.at_level(logging.INFO, logger=SCRIPT_LOGGER_NAME):
        executor.execute("log('spawned enemy')")
    assert "[EditorBridge] spawned enemy" in caplog.messages
