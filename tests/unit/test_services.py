"""
Unit tests for the SMS client and the Redis cache wrapper, with fake transports.
"""

import json
from decimal import Decimal

import pytest
import requests

from fieldservice.exceptions import DeliveryError
from fieldservice.services.cache_service import CacheService
from fieldservice.services.sms_client import SmsClient

from tests.fakes import FakeRedis


def _response(status_code, body):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode('utf-8')
    return response


class TestSmsClient:
    """Tests for SmsClient."""

    def test_disabled_without_key(self, mocker):
        """Test that a client without an API key sends nothing."""
        http = mocker.MagicMock()
        client = SmsClient(api_key=None, from_number='4165550100', http=http)

        assert client.send('4165550199', 'Hi') is None
        http.post.assert_not_called()

    def test_send_normalises_numbers(self, mocker):
        """Test that both numbers are sent in E.164 form."""
        http = mocker.MagicMock()
        http.post.return_value = _response(200, {'data': {'id': 'msg-1'}})
        client = SmsClient(api_key='key', from_number='(416) 555-0100', http=http)

        assert client.send('416-555-0199', 'Your invoice is ready') == 'msg-1'
        payload = http.post.call_args.kwargs['json']
        assert payload == {'from': '+14165550100', 'to': '+14165550199', 'text': 'Your invoice is ready'}

    def test_provider_error_detail(self, mocker):
        """Test that the provider's error detail reaches the DeliveryError."""
        http = mocker.MagicMock()
        http.post.return_value = _response(422, {'errors': [{'detail': 'Invalid destination number'}]})
        client = SmsClient(api_key='key', from_number='4165550100', http=http)

        with pytest.raises(DeliveryError) as exc_info:
            client.send('4165550199', 'Hi')
        assert 'Invalid destination number' in exc_info.value.message

    def test_network_error(self, mocker):
        """Test that network errors become DeliveryError."""
        http = mocker.MagicMock()
        http.post.side_effect = requests.ConnectionError('refused')
        client = SmsClient(api_key='key', from_number='4165550100', http=http)

        with pytest.raises(DeliveryError):
            client.send('4165550199', 'Hi')


class TestCacheService:
    """Tests for CacheService."""

    def test_memoize_loads_once(self, mocker):
        """Test that a cached value is served without calling the loader again."""
        cache = CacheService(client=FakeRedis())
        loader = mocker.MagicMock(return_value={'total': Decimal('203.40')})

        first = cache.memoize('c1', 'portal', 'dashboard', loader, ttl=30)
        second = cache.memoize('c1', 'portal', 'dashboard', loader, ttl=30)

        assert first == second == {'total': Decimal('203.40')}
        loader.assert_called_once()

    def test_invalidate_module_is_per_client(self):
        """Test that invalidating one client's module leaves other clients cached."""
        redis_client = FakeRedis()
        cache = CacheService(client=redis_client)
        cache.set('c1', 'portal', 'dashboard', {'a': 1}, ttl=30)
        cache.set('c2', 'portal', 'dashboard', {'a': 2}, ttl=30)

        assert cache.invalidate_module('c1', 'portal') == 1
        assert cache.get('c1', 'portal', 'dashboard') is None
        assert cache.get('c2', 'portal', 'dashboard') == {'a': 2}

    def test_delete_single_key(self):
        """Test deleting one key of a module."""
        cache = CacheService(client=FakeRedis())
        cache.set('c1', 'portal', 'dashboard', {'a': 1}, ttl=30)
        cache.set('c1', 'portal', 'estimates', {'b': 2}, ttl=30)

        assert cache.delete('c1', 'portal', 'dashboard') is True
        assert cache.get('c1', 'portal', 'dashboard') is None
        assert cache.get('c1', 'portal', 'estimates') == {'b': 2}

    def test_disabled_cache_calls_loader(self, mocker):
        """Test that without Redis every call goes to the loader."""
        cache = CacheService()
        loader = mocker.MagicMock(return_value=[1, 2])

        assert cache.memoize('c1', 'portal', 'dashboard', loader) == [1, 2]
        assert cache.memoize('c1', 'portal', 'dashboard', loader) == [1, 2]
        assert loader.call_count == 2
        assert cache.delete('c1', 'portal', 'dashboard') is False
