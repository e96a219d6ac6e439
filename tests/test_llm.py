import pytest

from cc_reports import llm
from cc_reports.errors import ReportError


class FakeOpenAI(object):
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        FakeOpenAI.instances.append(self)


@pytest.fixture
def fake_openai(monkeypatch):
    FakeOpenAI.instances = []
    monkeypatch.setattr(llm.openai, 'OpenAI', FakeOpenAI)
    return FakeOpenAI


def test_completion_requires_api_key(monkeypatch):
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)

    with pytest.raises(ReportError, match='OPENAI_API_KEY'):
        llm.build_completion(api_key=None)


def test_client_never_retries(fake_openai):
    llm.build_completion(api_key='key', timeout=15)

    kwargs = fake_openai.instances[0].kwargs
    assert kwargs['max_retries'] == 0
    assert kwargs['timeout'] == 15.0
    assert kwargs['api_key'] == 'key'


def test_api_key_from_environment(monkeypatch, fake_openai):
    monkeypatch.setenv('OPENAI_API_KEY', 'from-env')

    llm.build_completion()

    assert fake_openai.instances[0].kwargs['api_key'] == 'from-env'
