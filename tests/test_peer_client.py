"""Unit tests for PeerClient."""

import httpx
import pytest

from cli.peer_client import PeerClient

CID = 'ab' * 32


@pytest.fixture
def mock_transport_success():
    """Mock transport that returns successful responses."""
    def handler(request):
        if request.url.path == '/backup':
            return httpx.Response(200, json={
                'content_id': CID,
                'path': '/data/report.pdf',
                'total_chunks': 4,
                'replication_degree': 2
            })
        elif request.url.path == '/restore':
            return httpx.Response(200, json={
                'content_id': CID,
                'output_path': '/var/backup/restored/20240101-120000 - report.pdf',
                'total_chunks': 4
            })
        elif request.url.path == '/restore/cancel':
            return httpx.Response(200, json={'content_id': CID, 'cancelled': True})
        elif request.url.path == '/delete':
            return httpx.Response(200, json={
                'content_id': CID,
                'confirmed_peers': [2, 3],
                'pending_peers': [5]
            })
        elif request.url.path == '/reclaim':
            return httpx.Response(200, json={
                'max_kb': 100,
                'used_kb': 72.0,
                'evicted': [{'content_id': CID, 'chunk_index': 0}]
            })
        elif request.url.path == '/info':
            return httpx.Response(200, json={
                'peer_id': 1,
                'protocol_version': '2.0',
                'max_kb': 5000,
                'used_kb': 128.0,
                'backed_up_files': [{
                    'path': '/data/report.pdf',
                    'content_id': CID,
                    'desired_degree': 2,
                    'chunks': {'0': 2, '1': 1}
                }],
                'stored_chunks': [{
                    'content_id': 'cd' * 32,
                    'chunk_index': 3,
                    'size_kb': 64.0,
                    'desired_degree': 1,
                    'perceived_degree': 1
                }],
                'pending_deletes': {'5': [CID]}
            })

        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
def client_with_mock(temp_config, mock_transport_success):
    """Create PeerClient with mocked HTTP transport."""
    client = PeerClient(temp_config)
    client.session = httpx.Client(transport=mock_transport_success, base_url='http://test')
    return client


def _client_with_handler(temp_config, handler):
    temp_config.data['retry_backoff_multiplier'] = 0
    client = PeerClient(temp_config)
    client.session = httpx.Client(transport=httpx.MockTransport(handler), base_url='http://test')
    return client


def test_backup_success(client_with_mock):
    result = client_with_mock.backup('/data/report.pdf', 2)

    assert 'Backup complete' in result
    assert CID in result
    assert 'Chunks: 4' in result


def test_restore_success(client_with_mock):
    result = client_with_mock.restore('/data/report.pdf')

    assert 'Restore complete' in result
    assert '20240101-120000 - report.pdf' in result


def test_cancel_success(client_with_mock):
    assert client_with_mock.cancel_restore(CID) == 'Restore of abababababab... cancelled'


def test_delete_lists_confirmed_and_pending(client_with_mock):
    result = client_with_mock.delete('/data/report.pdf')

    assert 'Confirmed by peers: 2, 3' in result
    assert 'on peers: 5' in result


def test_reclaim_lists_evicted(client_with_mock):
    result = client_with_mock.reclaim(100)

    assert 'Reclaim complete' in result
    assert '72.0 KB' in result
    assert 'evicted abababababab... #0' in result


def test_info_report(client_with_mock):
    result = client_with_mock.info()

    assert result.startswith('Peer 1 (protocol 2.0)')
    assert 'Storage: 128.0 KB / 5.00 MB' in result
    assert 'chunk 0: perceived 2' in result
    assert 'chunk 1: perceived 1' in result
    assert 'cdcdcdcdcdcd... #3 64.0 KB desired=1 perceived=1' in result
    assert 'peer 5: abababababab...' in result


def test_request_carries_request_id(temp_config):
    seen = []

    def handler(request):
        seen.append(request.headers.get('X-Request-ID'))
        return httpx.Response(200, json={'content_id': CID, 'cancelled': False})

    client = _client_with_handler(temp_config, handler)
    result = client.cancel_restore(CID)

    assert 'No restore of' in result
    assert seen == [client.request_id]


def test_client_error_not_retried(temp_config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, json={'detail': 'No backup known', 'code': 'FILE_NOT_BACKED_UP'})

    client = _client_with_handler(temp_config, handler)
    result = client.restore('/data/missing.pdf')

    assert result == 'Restore failed: No backup of this file is known to the network.'
    assert len(calls) == 1


def test_operation_failure_not_retried(temp_config):
    """A failed backup must not be re-run by the retry loop."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={'detail': '1 chunk(s) below degree 3', 'code': 'INSUFFICIENT_REPLICATION'})

    client = _client_with_handler(temp_config, handler)
    result = client.backup('/data/report.pdf', 3)

    assert result == 'Backup failed: Backup incomplete: 1 chunk(s) below degree 3'
    assert len(calls) == 1


def test_server_error_retried(temp_config):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(500, json={'detail': 'boom', 'code': 'INTERNAL_ERROR'})
        return httpx.Response(200, json={
            'content_id': CID, 'path': '/data/a.txt', 'total_chunks': 1, 'replication_degree': 1
        })

    client = _client_with_handler(temp_config, handler)
    client.config.data['max_retries'] = 3

    assert 'Backup complete' in client.backup('/data/a.txt', 1)
    assert len(calls) == 3


def test_connection_error(temp_config):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    temp_config.data['max_retries'] = 1
    client = _client_with_handler(temp_config, handler)

    assert client.info() == 'Error: Cannot connect to peer. Is it running?'


def test_unknown_error_code_falls_back_to_status(temp_config):
    def handler(request):
        return httpx.Response(409, json={'detail': 'busy', 'code': 'SOMETHING_NEW'})

    client = _client_with_handler(temp_config, handler)
    assert client.reclaim(1) == 'Reclaim failed: Conflict (Code: SOMETHING_NEW)'
