from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import app as server
from autoquiz.config import ConfigStore
from autoquiz.errors import AuthFailure, ServiceBusy
from autoquiz.schema import QuizDescriptor


@pytest.fixture
def service():
    fake = MagicMock()
    fake.status.return_value = {'running': False, 'currentTask': '', 'message': '', 'progress': 0, 'total': 0}
    return fake


@pytest.fixture
def client(monkeypatch, config, service):
    monkeypatch.setattr(server, 'config', config)
    monkeypatch.setattr(server, 'service', service)
    return TestClient(server.app)


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json()['status'] == 'healthy'


def test_status_when_idle_reports_readiness(client):
    assert client.get('/api/status').json()['message'] == '就绪'


def test_config_hides_the_password(client):
    data = client.get('/api/config').json()
    assert data == {
        'user_name': '13800138000',
        'has_password': True,
        'has_cookie': False,
        'masked_user': '138****8000',
        'submit_delay': 0,
    }


def test_config_update_keeps_the_stored_user(client, config):
    response = client.post('/api/config', json={'password': 'new-secret', 'submit_delay': 5})
    assert response.json()['success']
    assert config.user_data.user_name == '13800138000'
    assert config.user_data.password == 'new-secret'
    assert config.submit_delay == 5


def test_models_never_expose_keys(client):
    models = client.get('/api/models').json()
    assert models == [{'name': 'DeepSeek', 'enabled': True, 'base_url': 'https://api.deepseek.com',
                       'model': 'deepseek-chat', 'has_api_key': True}]


def test_saving_models_without_key_keeps_the_stored_one(client, config):
    response = client.post('/api/models', json=[
        {'name': 'DeepSeek', 'enabled': True, 'base_url': 'https://api.deepseek.com', 'model': 'deepseek-reasoner'},
        {'name': 'Ollama', 'enabled': False, 'base_url': 'http://localhost:11434/v1', 'model': 'qwen3:8b'},
    ])
    assert response.json()['success']
    assert [(m.name, m.api_key, m.model) for m in config.models] == [
        ('DeepSeek', 'sk-test', 'deepseek-reasoner'), ('Ollama', '', 'qwen3:8b')]


def test_model_test_requires_complete_profile(client):
    data = client.post('/api/models/test', json={'name': 'Ollama', 'base_url': 'http://localhost:11434/v1'}).json()
    assert data['success'] is False


def test_start_requires_a_ready_configuration(monkeypatch, client, service, tmp_path):
    empty = ConfigStore(str(tmp_path / 'empty.json'))
    empty.load()
    monkeypatch.setattr(server, 'config', empty)

    data = client.post('/api/start', json={}).json()

    assert data['success'] is False
    service.start.assert_not_called()


def test_start_single_quiz(client, service):
    service.start.return_value = True
    data = client.post('/api/start', json={'quizUrl': 'https://www.mosoteach.cn/quiz/1'}).json()
    assert data == {'success': True, 'message': '任务已启动'}
    service.start.assert_called_once_with(['https://www.mosoteach.cn/quiz/1'])


def test_start_while_running(client, service):
    service.start.return_value = False
    data = client.post('/api/start', json={'quizUrls': ['a', 'b']}).json()
    assert data == {'success': False, 'message': '任务正在运行中'}


def test_quizzes_busy_is_a_conflict(client, service):
    service.fetch_quizzes = AsyncMock(side_effect=ServiceBusy('有任务正在运行中'))
    assert client.get('/api/quizzes').status_code == 409


def test_quizzes_failure_is_a_server_error(client, service):
    service.fetch_quizzes = AsyncMock(side_effect=AuthFailure('登录失败'))
    assert client.get('/api/quizzes').status_code == 500


def test_quizzes_listing(client, service):
    service.fetch_quizzes = AsyncMock(return_value=[
        QuizDescriptor(url='u1', course_id='C1', course_name='生物学', quiz_id='Q1', name='第一章测验')])
    data = client.get('/api/quizzes').json()
    assert [q['url'] for q in data] == ['u1']


def test_cached_quizzes(client, config):
    config.save_cached_quizzes([QuizDescriptor(url='u1', name='第一章测验')])
    config.add_completed_url('u1')
    data = client.get('/api/quizzes/cache').json()
    assert len(data) == 1
    assert data[0]['completed'] is True


def test_login_busy(client, service):
    service.login = AsyncMock(side_effect=ServiceBusy('有任务正在运行中'))
    assert client.post('/api/login').json() == {'success': False, 'message': '有任务正在运行中'}
