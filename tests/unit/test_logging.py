"""Tests for structured logging setup and token redaction."""

from __future__ import annotations

import json

import pytest

from slink.logging import (
    configure_logging,
    get_logger,
    invocation_id_ctx,
    new_invocation_id,
    redact_token,
)


def _json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.startswith('{')]


class TestRedactToken:
    def test_keeps_short_prefix(self):
        assert redact_token('AbCdEfGhIj') == 'AbCd...'

    @pytest.mark.parametrize('token', [None, '', 'abc', 'abcd'])
    def test_short_or_missing(self, token):
        assert redact_token(token) == '<redacted>'


class TestConfigureLogging:
    def test_json_output_carries_invocation_id(self, capsys):
        configure_logging(level='INFO', json_output=True, force=True)
        iid = new_invocation_id()

        get_logger('slink.test').info('share_created', recipient='alice')

        [entry] = _json_lines(capsys.readouterr().err)
        assert entry['event'] == 'share_created'
        assert entry['recipient'] == 'alice'
        assert entry['invocation_id'] == iid
        assert entry['level'] == 'info'
        assert entry['logger'] == 'slink.test'

    def test_exception_is_rendered(self, capsys):
        configure_logging(level='INFO', json_output=True, force=True)
        try:
            raise RuntimeError('disk full')
        except RuntimeError:
            get_logger('slink.test').exception('file_add_failed')

        [entry] = _json_lines(capsys.readouterr().err)
        assert entry['event'] == 'file_add_failed'
        assert 'RuntimeError: disk full' in entry['exception']

    def test_level_filters(self, capsys):
        configure_logging(level='WARNING', json_output=True, force=True)
        log = get_logger('slink.test')
        log.info('quiet')
        log.warning('loud')
        events = [e['event'] for e in _json_lines(capsys.readouterr().err)]
        assert events == ['loud']

    def test_env_selects_level_and_format(self, capsys, monkeypatch):
        monkeypatch.setenv('SLINK_LOG_LEVEL', 'DEBUG')
        monkeypatch.setenv('SLINK_LOG_FORMAT', 'json')
        configure_logging(force=True)
        get_logger('slink.test').debug('token_collision', attempt=1)
        [entry] = _json_lines(capsys.readouterr().err)
        assert entry['event'] == 'token_collision'

    def test_console_output_is_default(self, capsys):
        configure_logging(level='INFO', force=True)
        get_logger('slink.test').info('file_added', filename='a.txt')
        err = capsys.readouterr().err
        assert 'file_added' in err
        assert 'filename=a.txt' in err
        assert not err.lstrip().startswith('{')

    def test_nothing_on_stdout(self, capsys):
        configure_logging(level='DEBUG', force=True)
        get_logger('slink.test').warning('reference_ambiguous')
        assert capsys.readouterr().out == ''


def test_new_invocation_id_sets_context():
    iid = new_invocation_id()
    assert invocation_id_ctx.get() == iid
    assert len(iid) == 12
    assert new_invocation_id() != iid
