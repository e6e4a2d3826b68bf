import json

import pytest

from autoquiz.config import ConfigStore, ModelProfile, Settings, Timings
from autoquiz.errors import ConfigError
from autoquiz.schema import QuizDescriptor


def test_missing_file_is_created_with_default_models(tmp_path):
    path = tmp_path / 'user_data.json'
    store = ConfigStore(str(path))
    store.load()

    data = json.loads(path.read_text(encoding='utf-8'))
    assert [m['name'] for m in data['models']] == ['DeepSeek', 'Gemini', 'OpenAI', '通义千问', 'Moonshot', 'Ollama']
    assert data['user_data'] == {'user_name': '', 'password': '', 'Cookie': ''}
    assert data['submit_delay'] == 0

    path.unlink()
    store.save()
    assert json.loads(path.read_text(encoding='utf-8'))['models'] == data['models']


def test_cookie_alias_round_trips_through_the_file(tmp_path):
    path = tmp_path / 'user_data.json'
    path.write_text(json.dumps({
        'user_data': {'user_name': '13800138000', 'password': 'pw', 'Cookie': 'a=1'},
        'models': [{'name': 'Ollama', 'enabled': True, 'base_url': 'http://localhost:11434/v1',
                    'api_key': 'ollama', 'model': 'qwen3:8b'}],
    }), encoding='utf-8')
    store = ConfigStore(str(path))
    store.load()

    assert store.user_data.cookie == 'a=1'
    store.update_cookie('b=2')
    assert json.loads(path.read_text(encoding='utf-8'))['user_data']['Cookie'] == 'b=2'


def test_corrupt_file_raises_config_error(tmp_path):
    path = tmp_path / 'user_data.json'
    path.write_text('{not json', encoding='utf-8')
    with pytest.raises(ConfigError):
        ConfigStore(str(path)).load()


def test_completion_ledger_persists_and_is_idempotent(config):
    url = 'https://www.mosoteach.cn/quiz/1'
    config.add_completed_url(url)
    config.add_completed_url(url)

    reloaded = ConfigStore(config.path)
    reloaded.load()
    assert reloaded.is_url_completed(url)
    assert json.loads(open(config.path, encoding='utf-8').read())['completed_urls'] == [url]


def test_cached_quizzes_reflect_the_ledger(config):
    config.save_cached_quizzes([
        QuizDescriptor(url='u1', course_id='C1', course_name='生物学', quiz_id='Q1', name='第一章'),
        QuizDescriptor(url='u2', course_id='C1', course_name='生物学', quiz_id='Q2', name='第二章'),
    ])
    config.add_completed_url('u2')

    cached = config.cached_quizzes()
    assert [(q.url, q.completed) for q in cached] == [('u1', False), ('u2', True)]

    config.mark_quiz_completed('u1')
    assert all(q.completed for q in config.cached_quizzes())


def test_enabled_models_need_a_key(config):
    config.update_models([
        ModelProfile(name='A', enabled=True, base_url='x', api_key='k', model='m'),
        ModelProfile(name='B', enabled=True, base_url='x', model='m'),
        ModelProfile(name='C', enabled=False, base_url='x', api_key='k', model='m'),
    ])
    assert [m.name for m in config.enabled_models()] == ['A']


def test_validation_messages(tmp_path):
    store = ConfigStore(str(tmp_path / 'c.json'))
    store.load()
    store.update_models([ModelProfile(name='DeepSeek', enabled=False)])
    assert store.is_ready() == (False, '请配置账号和模型')

    store.update_user('123', 'pw')
    assert ('user_name', '用户名应为11位手机号') in store.validate()


def test_ready_configuration(config):
    assert config.is_ready() == (True, '就绪')
    assert config.masked_username() == '138****8000'


def test_submit_delay_never_negative(config):
    config.set_submit_delay(-5)
    assert config.submit_delay == 0
    config.set_submit_delay(3)
    assert config.submit_delay == 3


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv('AUTOQUIZ_CONFIG', '/tmp/quiz.json')
    monkeypatch.setenv('CHROME_PATH', '/opt/chrome')
    monkeypatch.setenv('HEADLESS', 'false')
    monkeypatch.setenv('PORT', '8080')
    settings = Settings.from_env()
    assert (settings.config_path, settings.chrome_path, settings.headless, settings.port) == \
        ('/tmp/quiz.json', '/opt/chrome', False, 8080)


def test_instant_timings_are_all_zero():
    timings = Timings.instant()
    assert timings.login_settle == 0
    assert timings.container_timeout == 0
