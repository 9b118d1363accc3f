"""
API 服务测试
"""

import pytest
from fastapi.testclient import TestClient

from hanpin.api import server
from hanpin.engine import Tier, ToneVariant

from conftest import make_converter, make_storage


@pytest.fixture
def client():
    storage = make_storage({
        (Tier.SELF_LEARNED, ToneVariant.WITH_TONE): {'龘': 'dá'},
    })
    server.converter = make_converter(storage)
    with TestClient(server.app) as c:
        yield c
    server.converter = None


class TestHealth:
    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'healthy'
        assert data['version'] == '0.1.0'

    def test_request_id_header(self, client):
        response = client.get('/health')
        assert 'X-Request-ID' in response.headers
        assert response.headers['X-Response-Time'].endswith('ms')


class TestConvertEndpoint:
    """POST /convert"""

    def test_convert(self, client):
        response = client.post('/convert', json={'text': '你好'})
        assert response.status_code == 200
        assert response.json() == {'text': '你好', 'pinyin': 'ni hao'}

    def test_convert_options(self, client):
        response = client.post('/convert', json={
            'text': '银行，你好',
            'separator': '-',
            'with_tone': True,
            'special_chars': 'replace',
        })
        assert response.json()['pinyin'] == 'yín-háng-,-nǐ-hǎo'

    def test_convert_temp_map(self, client):
        response = client.post('/convert', json={'text': '行', 'temp_map': {'行': 'hang2'}})
        assert response.json()['pinyin'] == 'hang2'

    def test_empty_text(self, client):
        response = client.post('/convert', json={'text': '   '})
        assert response.status_code == 400

    def test_bad_special_mode(self, client):
        response = client.post('/convert', json={'text': '你好', 'special_chars': 'bogus'})
        assert response.status_code == 400

    def test_missing_text(self, client):
        response = client.post('/convert', json={})
        assert response.status_code == 422


class TestOtherEndpoints:
    """/slug /stats /merge"""

    def test_slug(self, client):
        response = client.get('/slug', params={'text': '你好 World'})
        assert response.status_code == 200
        assert response.json()['slug'] == 'ni-hao-world'

    def test_stats(self, client):
        client.post('/convert', json={'text': '你好'})
        stats = client.get('/stats').json()
        assert stats['conversions'] == 1
        assert stats['tiers']['common']['with_tone'] == 9

    def test_merge(self, client):
        response = client.post('/merge', json={'force': True})
        assert response.status_code == 200
        data = response.json()
        assert data['success'] == ['with_tone']
        assert data['merged']['with_tone'] == ['龘']

    def test_merge_not_due(self, client):
        response = client.post('/merge', json={})
        assert response.json()['success'] == []


class TestNotReady:
    def test_convert_without_converter(self):
        server.converter = None
        # 不进入 lifespan，转换器保持未初始化
        c = TestClient(server.app)
        assert c.get('/health').json()['status'] == 'not_ready'
        assert c.post('/convert', json={'text': '你好'}).status_code == 503
