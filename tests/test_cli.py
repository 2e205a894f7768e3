"""Tests for the `dalil` command line."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

from dalil import cli
from dalil.errors import ControllerUnreachableError
from dalil.paths import DataPaths, config_path
from dalil.repositories.connection import ConnectionStore
from dalil.repositories.history import HistoryRepository
from dalil.schemas.fields import FieldConstraints, FieldInfo
from dalil.schemas.protocol import ApplyChannel, PageInfo


class FakeClient:
    def __init__(self) -> None:
        self.applied: list[tuple[str, str]] = []

    def get_field(self, field_id: str) -> FieldInfo:
        return FieldInfo(
            field_id=field_id,
            kind='textarea',
            label='자기소개',
            constraints=FieldConstraints(required=True, max_length=500),
        )

    def apply(self, field_id: str, text: str) -> ApplyChannel:
        self.applied.append((field_id, text))
        return 'programmatic'

    def page_info(self) -> PageInfo:
        return PageInfo(url='https://recruit.example.co.kr/apply?id=7', title='지원서')


class TestHelpers:
    @pytest.mark.parametrize(
        'value, expected',
        [
            ('contact me at jane.doe@example.com', 'contact me at [email]'),
            ('010-1234-5678', '[phone]'),
            ('+82 10 1234 5678 after 6pm', '[phone] after 6pm'),
            ('I have 3 years of experience', 'I have 3 years of experience'),
            ('', ''),
        ],
    )
    def test_redact_value(self, value: str, expected: str) -> None:
        assert cli.redact_value(value) == expected

    @pytest.mark.parametrize(
        'url, hostname, etld_plus_one',
        [
            ('https://recruit.example.co.kr/apply', 'recruit.example.co.kr', 'co.kr'),
            ('https://www.example.com/form', 'www.example.com', 'example.com'),
            ('http://127.0.0.1:8000/', '127.0.0.1', '127.0.0.1'),
            ('http://localhost/', 'localhost', 'localhost'),
            (None, None, None),
            ('about:blank', None, None),
        ],
    )
    def test_infer_site(self, url: str | None, hostname: str | None, etld_plus_one: str | None) -> None:
        site = cli.infer_site(url)
        assert site.hostname == hostname
        assert site.etld_plus_one == etld_plus_one

    def test_format_table(self) -> None:
        table = cli.format_table(['ID', 'LABEL'], [['fld_1', 'Name'], ['fld_22', '자기소개']])
        assert table.splitlines() == ['ID      LABEL', 'fld_1   Name', 'fld_22  자기소개']


class TestParser:
    def test_global_options_survive_subcommand(self) -> None:
        args = cli.build_parser().parse_args(['--data-dir', '/d', '-v', 'fields', 'list'])
        assert args.data_dir == '/d'
        assert args.verbose is True
        assert args.handler is cli.cmd_fields_list

    def test_options_after_subcommand(self) -> None:
        args = cli.build_parser().parse_args(['apply', 'fld_1', '--text', 'hi', '--data-dir', '/d'])
        assert args.data_dir == '/d'
        assert args.verbose is False
        assert (args.field_id, args.text) == ('fld_1', 'hi')

    def test_run_defaults(self) -> None:
        args = cli.build_parser().parse_args(['run'])
        assert (args.mode, args.cdp, args.port) == ('managed', None, None)


class TestCommands:
    def test_no_command_is_usage_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2
        assert 'No command given' in capsys.readouterr().err

    def test_unconfigured_data_dir(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['status'])
        assert exc_info.value.code == 3
        assert 'dalil init --data-dir' in capsys.readouterr().err

    def test_status_without_runner(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['status', '--data-dir', str(tmp_path / 'data')])
        assert exc_info.value.code == 3
        assert 'Runner is not active' in capsys.readouterr().err

    def test_init_writes_config_and_layout(self, tmp_path: Path) -> None:
        data_dir = tmp_path / 'data'
        cli.main(['init', '--data-dir', str(data_dir), '--port', '45001'])

        raw = json.loads(config_path().read_text(encoding='utf-8'))
        assert raw['dataDir'] == str(data_dir.resolve())
        assert raw['runnerPort'] == 45001
        assert (data_dir / 'runtime').is_dir()

    def test_init_requires_data_dir(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['init'])
        assert exc_info.value.code == 2

    def test_config_show(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        cli.main(['init', '--data-dir', str(tmp_path / 'data')])
        capsys.readouterr()
        cli.main(['config', 'show'])
        shown = json.loads(capsys.readouterr().out)
        assert shown['runnerPort'] == 41730
        assert shown['dataDir'] == str((tmp_path / 'data').resolve())

    def test_apply_records_history(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        data_dir = tmp_path / 'data'
        paths = DataPaths(data_dir.resolve())
        client = FakeClient()

        def fake_client(args: argparse.Namespace) -> tuple[FakeClient, ConnectionStore]:
            return client, ConnectionStore(paths.connection_path, paths.connection_lock_path)

        monkeypatch.setattr(cli, '_client', fake_client)
        cli.main(['apply', 'fld_0123456789ab', '--text', '안녕하세요', '--data-dir', str(data_dir)])

        assert client.applied == [('fld_0123456789ab', '안녕하세요')]
        assert 'submit manually' in capsys.readouterr().out

        (entry,) = HistoryRepository(paths.history_path, paths.history_lock_path).recent()
        assert entry.site.hostname == 'recruit.example.co.kr'
        assert entry.page.title == '지원서'
        assert entry.fields[0].label == '자기소개'
        assert entry.fields[0].applied_text == '안녕하세요'
        assert entry.fields[0].constraints.max_length == 500

    def test_apply_reads_stdin(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        client = FakeClient()
        monkeypatch.setattr(cli, '_client', lambda args: (client, None))
        monkeypatch.setattr('sys.stdin', _Stdin('여러 줄\n텍스트'))
        cli.main(['apply', 'fld_1', '--text', '@-', '--data-dir', str(tmp_path / 'data')])
        assert client.applied == [('fld_1', '여러 줄\n텍스트')]

    def test_apply_trims_stdin(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        client = FakeClient()
        monkeypatch.setattr(cli, '_client', lambda args: (client, None))
        monkeypatch.setattr('sys.stdin', _Stdin('draft\n'))
        cli.main(['apply', 'fld_1', '--text', '@-', '--data-dir', str(tmp_path / 'data')])
        assert client.applied == [('fld_1', 'draft')]

    @pytest.mark.parametrize('stdin', ['', '  \n\n'])
    def test_apply_rejects_empty_stdin(
        self, stdin: str, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        client = FakeClient()
        monkeypatch.setattr(cli, '_client', lambda args: (client, None))
        monkeypatch.setattr('sys.stdin', _Stdin(stdin))

        with pytest.raises(SystemExit) as exc_info:
            cli.main(['apply', 'fld_1', '--text', '@-', '--data-dir', str(tmp_path / 'data')])

        assert exc_info.value.code == 2
        assert 'No stdin text' in capsys.readouterr().err
        assert client.applied == []

    def test_apply_records_history_when_page_info_fails(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        data_dir = tmp_path / 'data'
        paths = DataPaths(data_dir.resolve())
        client = PageInfoFailingClient()
        monkeypatch.setattr(cli, '_client', lambda args: (client, None))

        cli.main(['apply', 'fld_1', '--text', '안녕하세요', '--data-dir', str(data_dir)])

        assert 'submit manually' in capsys.readouterr().out
        (entry,) = HistoryRepository(paths.history_path, paths.history_lock_path).recent()
        assert entry.page.url is None
        assert entry.site.hostname is None
        assert entry.fields[0].applied_text == '안녕하세요'

    def test_history_list_empty(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        cli.main(['history', 'list', '--data-dir', str(tmp_path / 'data')])
        assert capsys.readouterr().out.strip() == 'No history yet.'


class _Stdin:
    def __init__(self, text: str) -> None:
        self._text = text

    def read(self) -> str:
        return self._text


class PageInfoFailingClient(FakeClient):
    def page_info(self) -> PageInfo:
        raise ControllerUnreachableError('Runner is not active.')
