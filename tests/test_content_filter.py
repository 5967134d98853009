import asyncio
from unittest.mock import Mock

import pytest

import vetscribe.content_filter as cf
from vetscribe.settings import Settings

RAW = 'Veterinarian: Hello, nice weather.\n\nSpeaker 1: She has been vomiting since Monday.'


def _settings(**kw):
    kw.setdefault('genai_api_key', 'key')
    return Settings(**kw)


@pytest.fixture
def gemini(monkeypatch):
    """Real GenerativeModel with only the network call replaced."""
    calls = {'configure': [], 'generate': []}
    monkeypatch.setattr(cf, '_configured_key', None)
    monkeypatch.setattr(cf.genai, 'configure', lambda **k: calls['configure'].append(k))

    def generate_content(self, prompt, generation_config=None, request_options=None):
        calls['generate'].append((self.model_name, prompt, generation_config, request_options))
        return Mock(text='Speaker 1: She has been vomiting since Monday.')

    async def generate_content_async(self, *args, **kwargs):
        raise RuntimeError('Event loop is closed')

    monkeypatch.setattr(cf.genai.GenerativeModel, 'generate_content', generate_content)
    monkeypatch.setattr(cf.genai.GenerativeModel, 'generate_content_async', generate_content_async)
    return calls


def test_filter_uses_model_output_verbatim(gemini):
    outcome = asyncio.run(cf.apply_filter(RAW, settings=_settings(genai_model='models/test')))
    assert outcome.filtered
    assert outcome.text == 'Speaker 1: She has been vomiting since Monday.'
    name, prompt, config, options = gemini['generate'][0]
    assert name == 'models/test'
    assert RAW in prompt
    assert config == {'temperature': 0.1}
    assert options == {'timeout': 60}


def test_filter_works_across_event_loops(gemini):
    settings = _settings()
    first = asyncio.run(cf.apply_filter(RAW, settings=settings))
    second = asyncio.run(cf.apply_filter(RAW, settings=settings))
    assert first.filtered and second.filtered
    assert len(gemini['generate']) == 2
    assert gemini['configure'] == [{'api_key': 'key'}]


def test_client_reconfigured_when_key_changes(gemini):
    asyncio.run(cf.apply_filter(RAW, settings=_settings(genai_api_key='a')))
    asyncio.run(cf.apply_filter(RAW, settings=_settings(genai_api_key='b')))
    assert gemini['configure'] == [{'api_key': 'a'}, {'api_key': 'b'}]


def test_filter_falls_back_on_provider_error(monkeypatch):
    async def boom(prompt, settings):
        raise RuntimeError('quota exceeded')

    monkeypatch.setattr(cf, '_call_model', boom)
    outcome = asyncio.run(cf.apply_filter(RAW, settings=_settings()))
    assert not outcome.filtered
    assert outcome.text == RAW
    assert 'quota' in outcome.error
    assert asyncio.run(cf.filter_transcript(RAW, settings=_settings())) == RAW


def test_filter_falls_back_on_timeout(monkeypatch):
    async def slow(prompt, settings):
        raise asyncio.TimeoutError()

    monkeypatch.setattr(cf, '_call_model', slow)
    assert asyncio.run(cf.filter_transcript(RAW, settings=_settings())) == RAW


def test_filter_falls_back_on_empty_response(monkeypatch):
    async def empty(prompt, settings):
        return ''

    monkeypatch.setattr(cf, '_call_model', empty)
    outcome = asyncio.run(cf.apply_filter(RAW, settings=_settings()))
    assert outcome.text == RAW
    assert not outcome.filtered


def test_filter_without_api_key_returns_input(monkeypatch):
    called = Mock()
    monkeypatch.setattr(cf, '_call_model', called)
    assert asyncio.run(cf.filter_transcript(RAW, settings=Settings())) == RAW
    called.assert_not_called()


def test_empty_transcript_is_returned_unchanged(monkeypatch):
    called = Mock()
    monkeypatch.setattr(cf, '_call_model', called)
    assert asyncio.run(cf.filter_transcript('', settings=_settings())) == ''
    called.assert_not_called()


def test_prompt_templates():
    clinical = cf.build_prompt('X: y', 'clinical')
    chart = cf.build_prompt('X: y', 'chart')
    assert clinical.endswith('Original transcription:\nX: y\n\nFiltered transcription:')
    for section in cf.CHART_SECTIONS:
        assert f'- {section}\n' in chart
    assert chart.endswith('Clinical chart:')
    with pytest.raises(ValueError):
        cf.build_prompt('X: y', 'poem')


def test_chart_template_is_sent(monkeypatch):
    prompts = []

    async def capture(prompt, settings):
        prompts.append(prompt)
        return 'Patient: Bella'

    monkeypatch.setattr(cf, '_call_model', capture)
    text = asyncio.run(cf.filter_transcript(RAW, settings=_settings(filter_template='chart')))
    assert text == 'Patient: Bella'
    assert 'Clinical chart:' in prompts[0]
