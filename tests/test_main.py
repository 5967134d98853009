import pytest

import vetscribe.main as main
from vetscribe.errors import RecognitionError, StorageURLError
from vetscribe.settings import Settings
from vetscribe.storage import SignedUrl
from vetscribe.tasks import TranscriptionResult


class FakeSigner:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def _sign(self, method, key, ttl_seconds, content_type=None):
        self.calls.append((method, key, ttl_seconds, content_type))
        if self.fail:
            raise StorageURLError(f'Failed to generate signed {method} URL')
        return SignedUrl(url=f'https://signed/{key}?m={method}', key=key, expires_in=ttl_seconds)

    def issue_read_url(self, key, ttl_seconds=3600):
        return self._sign('GET', key, ttl_seconds)

    def issue_write_url(self, key, content_type, ttl_seconds=3600):
        return self._sign('PUT', key, ttl_seconds, content_type)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, '_settings', Settings(bucket_name='vet'))
    monkeypatch.setattr(main, '_signer', FakeSigner())
    monkeypatch.setattr(main, '_recognizer', object())
    return main.app.test_client()


def test_health(client):
    rv = client.get('/health')
    assert rv.status_code == 200
    assert rv.get_json() == {'status': 'ok'}


def test_upload_url(client):
    rv = client.post('/upload-url', json={'fileName': 'consult.webm', 'contentType': 'audio/webm'})
    assert rv.status_code == 200
    body = rv.get_json()
    assert body['success'] is True
    assert body['key'].startswith('recordings/') and body['key'].endswith('.webm')
    assert body['signedUrl'] == f"https://signed/{body['key']}?m=PUT"
    assert body['expiresIn'] == 3600
    assert main._signer.calls[0][3] == 'audio/webm'


def test_upload_url_requires_fields(client):
    assert client.post('/upload-url', json={'fileName': 'a.webm'}).status_code == 400
    assert client.post('/upload-url', data='not json').status_code == 400


@pytest.mark.parametrize('body', ['consult.webm', ['consult.webm', 'audio/webm'], 3])
def test_non_object_json_is_rejected(client, body):
    assert client.post('/upload-url', json=body).status_code == 400
    rv = client.post('/transcribe', json=body)
    assert rv.status_code == 400
    assert rv.get_json() == {'error': 'No audio key provided'}


def test_upload_url_storage_failure(client, monkeypatch):
    monkeypatch.setattr(main, '_signer', FakeSigner(fail=True))
    rv = client.post('/upload-url', json={'fileName': 'a.webm', 'contentType': 'audio/webm'})
    assert rv.status_code == 500
    assert 'error' in rv.get_json()


def test_transcribe(client, monkeypatch):
    calls = []

    async def fake_transcribe(key, language, **kwargs):
        calls.append((key, language, kwargs))
        return TranscriptionResult('Veterinarian: Hi', 'filtered', 'nl', key)

    monkeypatch.setattr(main.tasks, 'transcribe', fake_transcribe)
    rv = client.post('/transcribe', json={'key': 'recordings/a.webm', 'language': 'nl'})
    assert rv.status_code == 200
    assert rv.get_json() == {
        'success': True,
        'transcription': 'filtered',
        'originalTranscription': 'Veterinarian: Hi',
        'language': 'nl',
        'audioKey': 'recordings/a.webm',
        'warnings': [],
    }
    key, language, kwargs = calls[0]
    assert language == 'nl'
    assert kwargs['signer'] is main._signer


def test_transcribe_requires_key(client):
    rv = client.post('/transcribe', json={})
    assert rv.status_code == 400
    assert rv.get_json() == {'error': 'No audio key provided'}


@pytest.mark.parametrize('error, stage', [
    (StorageURLError('Failed to generate download URL'), 'storage'),
    (RecognitionError('Failed to transcribe audio'), 'recognition'),
])
def test_transcribe_stage_errors(client, monkeypatch, error, stage):
    async def failing(key, language, **kwargs):
        raise error

    monkeypatch.setattr(main.tasks, 'transcribe', failing)
    rv = client.post('/transcribe', json={'key': 'k'})
    assert rv.status_code == 500
    assert rv.get_json() == {'error': error.message, 'stage': stage}


def test_audio_redirect(client):
    rv = client.get('/audio/recordings/1757270063860-3ltl0fr4izt.webm')
    assert rv.status_code == 302
    assert rv.headers['Location'] == 'https://signed/recordings/1757270063860-3ltl0fr4izt.webm?m=GET'
    assert main._signer.calls[0][2] == 7200


def test_audio_redirect_failure(client, monkeypatch):
    monkeypatch.setattr(main, '_signer', FakeSigner(fail=True))
    rv = client.get('/audio/recordings/a.webm')
    assert rv.status_code == 500
    assert rv.get_json() == {'error': 'Failed to generate audio URL'}


def test_transcribe_returns_speech_warnings(client, monkeypatch):
    async def fake_transcribe(key, language, **kwargs):
        return TranscriptionResult('r', 'f', 'nl', key, ('Low audio quality detected',))

    monkeypatch.setattr(main.tasks, 'transcribe', fake_transcribe)
    rv = client.post('/transcribe', json={'key': 'k'})
    assert rv.get_json()['warnings'] == ['Low audio quality detected']
