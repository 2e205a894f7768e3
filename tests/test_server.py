"""Tests for the Control Protocol served by the FastAPI app."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

from dalil.errors import NoUndoAvailableError
from dalil.server import ControlPlane, create_app
from tests.fake_page import FakePage

INTRO = 'form#apply > textarea#intro'
STARTED_AT = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


def make_plane(page: FakePage) -> ControlPlane:
    return ControlPlane(page, mode='managed', started_at=STARTED_AT, typing_delay_ms=0)


@pytest.fixture
def client(intro_page: FakePage) -> Iterator[TestClient]:
    with TestClient(create_app(make_plane(intro_page))) as test_client:
        yield test_client


def scan_ids(client: TestClient) -> list[str]:
    body = client.post('/scan_fields').json()
    return [f['fieldId'] for f in body['fields']]


class TestEnvelope:
    def test_health(self, client: TestClient) -> None:
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json() == {'ok': True, 'mode': 'managed', 'startedAt': '2026-03-01T09:30:00+00:00'}

    def test_unknown_endpoint(self, client: TestClient) -> None:
        response = client.post('/navigate', json={'url': 'https://example.com'})
        assert response.status_code == 404
        assert response.json() == {'ok': False, 'error': 'Unknown endpoint.'}

    def test_invalid_body_is_usage_error(self, client: TestClient) -> None:
        response = client.post('/set_field_value', json={'text': 'missing id'})
        assert response.status_code == 400
        body = response.json()
        assert body['ok'] is False
        assert 'fieldId' in body['error']

    def test_unknown_keys_rejected(self, client: TestClient) -> None:
        response = client.post('/revert_field', json={'fieldId': 'fld_x', 'force': True})
        assert response.status_code == 400

    def test_unexpected_error_keeps_envelope(self, intro_page: FakePage) -> None:
        class ExplodingPage(FakePage):
            async def evaluate_in_page(self, script: str, arg: object = None) -> object:
                raise RuntimeError('boom')

        app = create_app(make_plane(ExplodingPage()))
        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.post('/scan_fields')
        assert response.status_code == 500
        assert response.json() == {'ok': False, 'error': 'RuntimeError: boom'}


class TestFields:
    def test_scan_returns_wire_descriptors(self, client: TestClient) -> None:
        body = client.post('/scan_fields').json()
        assert body['ok'] is True
        assert body['excluded'] == {'contentEditable': 0, 'frames': 0}

        intro = body['fields'][0]
        assert intro['label'] == '자기소개'
        assert intro['kind'] == 'textarea'
        assert intro['constraints'] == {
            'required': True,
            'maxLength': 500,
            'pattern': None,
            'languageHint': None,
        }
        assert 'domPath' not in intro

    def test_get_and_list_without_rescan(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[1]

        field = client.get(f'/field/{field_id}').json()['field']
        assert field['label'] == 'Name'
        assert field['constraints']['languageHint'] == '영문으로 입력'

        listed = client.get('/fields').json()['fields']
        assert [f['fieldId'] for f in listed] == scan_ids(client)
        assert intro_page.calls.count('scan') == 2

    def test_get_unknown_field(self, client: TestClient) -> None:
        response = client.get('/field/fld_000000000000')
        assert response.status_code == 404
        assert response.json() == {'ok': False, 'error': 'Field not found. Run scan first.'}

    def test_page_info(self, client: TestClient) -> None:
        body = client.get('/page_info').json()
        assert body == {'ok': True, 'page': {'url': 'https://apply.example.co.kr/form', 'title': 'Application'}}

    def test_highlight(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]
        assert client.post('/highlight_field', json={'fieldId': field_id}).json() == {'ok': True}
        assert intro_page.highlighted == [INTRO]


class TestMutations:
    def test_set_read_revert(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]

        assert client.post('/set_field_value', json={'fieldId': field_id, 'text': '안녕하세요'}).json() == {
            'ok': True
        }
        assert client.post('/read_field_value', json={'fieldId': field_id}).json() == {
            'ok': True,
            'value': '안녕하세요',
        }
        assert client.post('/revert_field', json={'fieldId': field_id}).json() == {'ok': True}
        assert intro_page.value_of(INTRO) == ''

    def test_set_unknown_field_does_not_touch_page(self, client: TestClient, intro_page: FakePage) -> None:
        scan_ids(client)
        response = client.post('/set_field_value', json={'fieldId': 'fld_000000000000', 'text': 'x'})
        assert response.status_code == 404
        assert response.json()['ok'] is False
        assert intro_page.programmatic_writes == []

    def test_scan_clears_undo(self, client: TestClient) -> None:
        field_id = scan_ids(client)[0]
        client.post('/set_field_value', json={'fieldId': field_id, 'text': 'x'})
        assert scan_ids(client)[0] == field_id

        response = client.post('/revert_field', json={'fieldId': field_id})
        assert response.status_code == 409
        assert response.json() == {'ok': False, 'error': 'No undo snapshot available.'}

    def test_gone(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]
        intro_page.remove(INTRO)
        response = client.post('/set_field_value', json={'fieldId': field_id, 'text': 'x'})
        assert response.status_code == 410

    def test_set_blocked(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]
        intro_page.reject_programmatic = True
        response = client.post('/set_field_value', json={'fieldId': field_id, 'text': 'x'})
        assert response.status_code == 422
        assert intro_page.typed == []

    def test_apply_reports_channel(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]
        body = client.post('/apply_field', json={'fieldId': field_id, 'text': 'a'}).json()
        assert body == {'ok': True, 'channel': 'programmatic'}

        intro_page.ignore_programmatic = True
        body = client.post('/apply_field', json={'fieldId': field_id, 'text': 'b'}).json()
        assert body == {'ok': True, 'channel': 'keystrokes'}

    def test_type_into_field(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]
        assert client.post('/type_into_field', json={'fieldId': field_id, 'text': '타자'}).json() == {'ok': True}
        assert intro_page.typed == [(INTRO, '타자')]

    def test_type_driver_failure(self, client: TestClient, intro_page: FakePage) -> None:
        field_id = scan_ids(client)[0]
        intro_page.block_typing = True
        response = client.post('/type_into_field', json={'fieldId': field_id, 'text': 'x'})
        assert response.status_code == 502
        assert response.json()['ok'] is False


class TestShutdown:
    def test_invokes_callback(self, intro_page: FakePage) -> None:
        requested: list[bool] = []
        app = create_app(make_plane(intro_page), on_shutdown=lambda: requested.append(True))
        with TestClient(app) as test_client:
            assert test_client.post('/shutdown').json() == {'ok': True}
        assert requested == [True]

    def test_without_callback(self, client: TestClient) -> None:
        response = client.post('/shutdown')
        assert response.status_code == 400
        assert response.json()['ok'] is False


class TestSerialization:
    """Page requests are handled one at a time in arrival order."""

    def test_scan_waits_for_inflight_keystroke_fallback(self, intro_page: FakePage) -> None:
        intro_page.reject_programmatic = True
        intro_page.typing_pause = 0.05
        plane = make_plane(intro_page)

        async def scenario() -> str:
            field_id = (await plane.scan()).fields[0].field_id
            apply_task = asyncio.create_task(plane.apply(field_id, '지원합니다'))
            await asyncio.sleep(0)  # Let apply take the lock first
            await plane.scan()
            assert apply_task.done()
            return await apply_task

        assert asyncio.run(scenario()) == 'keystrokes'
        assert intro_page.calls == ['scan', 'type', 'scan']
        assert intro_page.value_of(INTRO) == '지원합니다'

    def test_revert_after_overlapping_scan_has_no_undo(self, intro_page: FakePage) -> None:
        plane = make_plane(intro_page)

        async def scenario() -> None:
            field_id = (await plane.scan()).fields[0].field_id
            await asyncio.gather(plane.set_value(field_id, 'x'), plane.scan())
            await plane.revert(field_id)

        with pytest.raises(NoUndoAvailableError):
            asyncio.run(scenario())
