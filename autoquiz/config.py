"""
Configuration Module
Process settings from the environment and the persisted user configuration
(credentials, model profiles, submit delay, quiz cache, completion ledger).
"""

import os
import json
import logging
import platform
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError
from .schema import QuizDescriptor

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = './user_data.json'
DEFAULT_PORT = 11451

LINUX_CHROME_PATHS = [
    '/usr/bin/google-chrome',
    '/usr/bin/google-chrome-stable',
    '/usr/bin/chromium-browser',
    '/usr/bin/chromium',
    '/snap/bin/chromium',
]


class ModelProfile(BaseModel):
    """One OpenAI-compatible chat-completion backend."""
    name: str
    enabled: bool = False
    base_url: str = ''
    api_key: str = ''
    model: str = ''

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.api_key)


class UserData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_name: str = ''
    password: str = ''
    cookie: str = Field(default='', alias='Cookie')


class CachedQuiz(BaseModel):
    url: str
    course_id: str = ''
    course_name: str = ''
    quiz_id: str = ''
    name: str = ''
    completed: bool = False


class ConfigFile(BaseModel):
    """On-disk layout of user_data.json."""
    user_data: UserData = Field(default_factory=UserData)
    models: List[ModelProfile] = Field(default_factory=list)
    submit_delay: int = 0
    cached_quizzes: List[CachedQuiz] = Field(default_factory=list)
    completed_urls: List[str] = Field(default_factory=list)


def default_models() -> List[ModelProfile]:
    return [
        ModelProfile(name='DeepSeek', enabled=True, base_url='https://api.deepseek.com',
                     model='deepseek-chat'),
        ModelProfile(name='Gemini', base_url='https://generativelanguage.googleapis.com/v1beta/openai',
                     model='gemini-2.5-flash'),
        ModelProfile(name='OpenAI', base_url='https://api.openai.com/v1', model='gpt-4o'),
        ModelProfile(name='通义千问', base_url='https://dashscope.aliyuncs.com/compatible-mode/v1',
                     model='qwen-plus'),
        ModelProfile(name='Moonshot', base_url='https://api.moonshot.cn/v1', model='moonshot-v1-auto'),
        ModelProfile(name='Ollama', base_url='http://localhost:11434/v1', api_key='ollama',
                     model='qwen3:8b'),
    ]


def find_chrome_binary() -> str:
    """Locate a local Chrome/Chromium; empty string means use Playwright's bundled build."""
    if platform.system() == 'Windows':
        candidates = [
            os.path.join(os.getenv('PROGRAMFILES', ''), 'Google', 'Chrome', 'Application', 'chrome.exe'),
            os.path.join(os.getenv('PROGRAMFILES(X86)', ''), 'Google', 'Chrome', 'Application', 'chrome.exe'),
            os.path.join(os.getenv('LOCALAPPDATA', ''), 'Google', 'Chrome', 'Application', 'chrome.exe'),
            os.path.join('.', 'chrome-win64', 'chrome.exe'),
            os.path.join('..', 'chrome-win64', 'chrome.exe'),
        ]
    else:
        candidates = LINUX_CHROME_PATHS

    for path in candidates:
        if os.path.isfile(path):
            return path
    return ''


@dataclass
class Timings:
    """Every wait interval used while driving the platform, in seconds."""
    login_settle: float = 10.0
    page_settle: float = 3.0
    quiz_settle: float = 5.0
    element_settle: float = 2.0
    short_pause: float = 0.5
    container_timeout: float = 10.0
    chunk_gap: float = 1.0
    inter_quiz: float = 2.0
    countdown_tick: float = 1.0
    submit_click: float = 1.0
    confirm_wait: float = 1.5
    second_confirm_wait: float = 1.0
    after_submit: float = 3.0
    close_grace: float = 0.5

    @classmethod
    def instant(cls) -> "Timings":
        """All waits disabled."""
        return cls(**{name: 0.0 for name in cls.__dataclass_fields__})


@dataclass
class Settings:
    """Process-level settings read from the environment."""
    config_path: str = DEFAULT_CONFIG_PATH
    chrome_path: str = ''
    headless: bool = True
    port: int = DEFAULT_PORT
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> "Settings":
        chrome_path = os.getenv('CHROME_PATH') or find_chrome_binary()
        return cls(
            config_path=os.getenv('AUTOQUIZ_CONFIG', DEFAULT_CONFIG_PATH),
            chrome_path=chrome_path,
            headless=os.getenv('HEADLESS', 'true').lower() not in ('0', 'false', 'no'),
            port=int(os.getenv('PORT', DEFAULT_PORT)),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )


class ConfigStore:
    """
    Persisted user configuration.

    Constructed once and handed to every component that needs it. All access goes
    through a lock; writes are flushed to disk immediately.
    """

    def __init__(self, path: str = DEFAULT_CONFIG_PATH):
        self.path = path
        self._lock = threading.RLock()
        self._data = ConfigFile(models=default_models())
        self._completed: Dict[str, bool] = {}

    # Lifecycle

    def load(self):
        """Read the file; a missing file is created with default models."""
        with self._lock:
            if not os.path.exists(self.path):
                logger.info(f"Config file {self.path} not found, writing defaults")
                self._data = ConfigFile(models=default_models())
                self._save_locked()
                return

            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
                data = ConfigFile.model_validate(raw)
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                raise ConfigError(f"加载配置失败: {e}") from e

            if not data.models:
                data.models = default_models()
            self._data = data
            for url in data.completed_urls:
                self._completed[url] = True

    def save(self):
        with self._lock:
            self._save_locked()

    def _save_locked(self):
        self._data.completed_urls = list(self._completed)
        payload = self._data.model_dump(by_alias=True)
        try:
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(payload, f, ensure_ascii=False, indent=4)
        except OSError as e:
            raise ConfigError(f"保存配置失败: {e}") from e

    # Credentials

    @property
    def user_data(self) -> UserData:
        with self._lock:
            return self._data.user_data.model_copy()

    def update_user(self, user_name: str, password: Optional[str] = None):
        with self._lock:
            self._data.user_data.user_name = user_name
            if password:
                self._data.user_data.password = password
            self._save_locked()

    def update_cookie(self, cookie: str):
        with self._lock:
            self._data.user_data.cookie = cookie
            self._save_locked()

    def masked_username(self) -> str:
        with self._lock:
            name = self._data.user_data.user_name
        if len(name) == 11:
            return name[:3] + '****' + name[7:]
        return name

    # Models

    @property
    def models(self) -> List[ModelProfile]:
        with self._lock:
            return [m.model_copy() for m in self._data.models]

    def enabled_models(self) -> List[ModelProfile]:
        with self._lock:
            return [m.model_copy() for m in self._data.models if m.usable]

    def update_models(self, models: List[ModelProfile]):
        with self._lock:
            self._data.models = list(models)
            self._save_locked()

    # Submit delay

    @property
    def submit_delay(self) -> int:
        with self._lock:
            return max(0, self._data.submit_delay)

    def set_submit_delay(self, seconds: int):
        with self._lock:
            self._data.submit_delay = max(0, int(seconds))
            self._save_locked()

    # Completion ledger

    def is_url_completed(self, url: str) -> bool:
        with self._lock:
            return self._completed.get(url, False)

    def add_completed_url(self, url: str):
        with self._lock:
            if self._completed.get(url):
                return
            self._completed[url] = True
            self._save_locked()

    def mark_quiz_completed(self, url: str):
        """Record completion in the ledger and in the cached quiz list."""
        with self._lock:
            self._completed[url] = True
            for quiz in self._data.cached_quizzes:
                if quiz.url == url:
                    quiz.completed = True
                    break
            self._save_locked()

    # Quiz cache

    def cached_quizzes(self) -> List[QuizDescriptor]:
        with self._lock:
            return [
                QuizDescriptor(
                    url=q.url,
                    course_id=q.course_id,
                    course_name=q.course_name,
                    quiz_id=q.quiz_id,
                    name=q.name,
                    completed=self._completed.get(q.url, False),
                )
                for q in self._data.cached_quizzes
            ]

    def save_cached_quizzes(self, quizzes: List[QuizDescriptor]):
        with self._lock:
            self._data.cached_quizzes = [CachedQuiz(**q.as_record()) for q in quizzes]
            self._save_locked()

    # Validation

    def validate(self) -> List[Tuple[str, str]]:
        """(field, message) pairs describing what keeps the solver from starting."""
        errors = []
        with self._lock:
            user = self._data.user_data
            models = list(self._data.models)

        if not user.user_name:
            errors.append(('user_name', '用户名不能为空'))
        elif len(user.user_name) != 11:
            errors.append(('user_name', '用户名应为11位手机号'))
        if not user.password:
            errors.append(('password', '密码不能为空'))

        has_enabled = False
        for i, m in enumerate(models):
            if not m.enabled:
                continue
            has_enabled = True
            if not m.api_key:
                errors.append((f'models[{i}].api_key', f'已启用的模型 {m.name} 缺少 API Key'))
            if not m.base_url:
                errors.append((f'models[{i}].base_url', f'已启用的模型 {m.name} 缺少 Base URL'))
            if not m.model:
                errors.append((f'models[{i}].model', f'已启用的模型 {m.name} 缺少模型名称'))
        if not has_enabled:
            errors.append(('models', '至少需要启用一个模型'))
        return errors

    def is_ready(self) -> Tuple[bool, str]:
        errors = self.validate()
        user_errors = [msg for name, msg in errors if name in ('user_name', 'password')]
        model_errors = [msg for name, msg in errors if name.startswith('models')]
        if user_errors and model_errors:
            return False, '请配置账号和模型'
        if errors:
            return False, errors[0][1]
        return True, '就绪'
