from __future__ import annotations

from pathlib import Path

import pytest

from dalil.paths import CONFIG_HOME_ENV, DATA_DIR_ENV, DataPaths
from tests.fake_page import FakeElement, FakePage


@pytest.fixture
def paths(tmp_path: Path) -> DataPaths:
    data_paths = DataPaths(tmp_path / 'data')
    data_paths.ensure()
    return data_paths


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep every test away from the real ~/.dalil and $DALIL_DATA_DIR."""
    monkeypatch.setenv(CONFIG_HOME_ENV, str(tmp_path / 'config-home'))
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)


@pytest.fixture
def intro_page() -> FakePage:
    """Korean application form: a 500-char self-introduction and an English name field."""
    return FakePage(
        [
            FakeElement(
                dom_path='form#apply > textarea#intro',
                kind='textarea',
                label='자기소개',
                input_type=None,
                hints=['500자 이내로 작성하세요'],
                max_length=500,
                required=True,
            ),
            FakeElement(
                dom_path='form#apply > input#name_en',
                label='Name',
                name='name_en',
                hints=['영문으로 입력', '영문으로 입력'],
            ),
        ]
    )
