"""
Tests for the bridge CLI request mapping.
"""

import pytest

from bridge.cli import build_request, create_parser


def parse(*argv):
    return create_parser().parse_args(list(argv))


def test_health():
    assert build_request(parse('health')) == ('GET', '/health', None)


def test_snapshot_mode():
    assert build_request(parse('snapshot', '--mode', 'ScriptsOnly')) == ('GET', '/snapshot?mode=ScriptsOnly', None)


def test_exec_inline_code():
    assert build_request(parse('exec', 'print(1)')) == ('POST', '/commands', {"code": "print(1)"})


def test_exec_from_file(tmp_path):
    script = tmp_path / "fragment.py"
    script.write_text("result = 42\n", encoding="utf-8")
    assert build_request(parse('exec', '--file', str(script))) == ('POST', '/commands', {"code": "result = 42\n"})


def test_exec_without_code():
    with pytest.raises(ValueError):
        build_request(parse('exec'))


def test_logs_filters_use_wire_names():
    method, path, body = build_request(parse(
        'logs', '--types', 'Error', 'Fatal', '--count', '5', '--fields', 'message',
        '--stack-trace-contains', 'Foo', '--after', '2024-01-01T00:00:00Z',
    ))
    assert (method, path) == ('POST', '/logs')
    assert body == {
        "types": ["Error", "Fatal"],
        "count": 5,
        "fields": ["message"],
        "stackTraceContains": "Foo",
        "timestampAfter": "2024-01-01T00:00:00Z",
    }


def test_logs_without_filters():
    assert build_request(parse('logs')) == ('POST', '/logs', {})
