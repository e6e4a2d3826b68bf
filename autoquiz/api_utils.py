"""
API Utilities Module
HTTP helpers and the OpenAI-compatible chat-completion client with ordered
fallback across configured model profiles.
"""

import asyncio
import time
import logging
from typing import Dict, List, Optional
import requests

from .cancellation import CancellationToken
from .config import ModelProfile
from .errors import ResolutionFailure

logger = logging.getLogger(__name__)

USER_AGENT = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36')

SYSTEM_PROMPT = ('你是一个专业的答题助手。请直接给出答案，不需要解释过程。'
                 '对于选择题，只需要给出答案的选项字母（如A、B、C、D）。'
                 '对于判断题，只需要回答"正确"或"错误"。对于填空题，直接给出答案内容。')

HTTP_TIMEOUT = 60


class APIClient:
    """HTTP client with retry logic."""

    def __init__(self, timeout: int = 30, max_retries: int = 3, cookies: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update({'User-Agent': USER_AGENT})
        if cookies:
            self.session.cookies.update(cookies)

    def get(self, url: str, headers: Optional[Dict] = None, params: Optional[Dict] = None) -> requests.Response:
        """GET request with retries."""
        for attempt in range(self.max_retries):
            try:
                response = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response
            except requests.RequestException as e:
                logger.warning(f"GET {url} attempt {attempt + 1} failed: {e}")
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                else:
                    raise

    def close(self):
        self.session.close()


def completions_url(base_url: str) -> str:
    """
    Build the chat-completions endpoint from a profile's base URL.

    A full path is used as-is; a base that already carries a version segment only
    gets /chat/completions; anything else gets /v1/chat/completions.
    """
    base = base_url.rstrip('/')
    if base.endswith('/chat/completions'):
        return base
    if '/v1' in base:
        return base + '/chat/completions'
    return base + '/v1/chat/completions'


class ChatModelClient:
    """Wrapper for one OpenAI-compatible chat-completion endpoint."""

    def __init__(self, profile: ModelProfile, session: Optional[requests.Session] = None):
        self.profile = profile
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return self.profile.name

    def get_answer(self, question: str, timeout: float = HTTP_TIMEOUT) -> str:
        """Send one prompt and return the trimmed reply text."""
        if not question:
            raise ResolutionFailure("题目内容为空")

        payload = {
            'model': self.profile.model,
            'messages': [
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': f"下面是一道题目:{question}"},
            ],
            'temperature': 0.1,
            'max_tokens': 1000,
        }
        headers = {
            'Content-Type': 'application/json',
            'Authorization': f"Bearer {self.profile.api_key}",
        }

        try:
            response = self.session.post(completions_url(self.profile.base_url), json=payload,
                                         headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise ResolutionFailure(f"请求失败: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ResolutionFailure(f"解析响应失败: {e}, body: {response.text[:200]}") from e

        if not isinstance(data, dict):
            raise ResolutionFailure(f"响应格式错误: {response.text[:200]}")

        error = data.get('error')
        if isinstance(error, dict) and error.get('message'):
            raise ResolutionFailure(f"API错误: {error['message']}")
        if isinstance(error, str) and error:
            raise ResolutionFailure(f"API错误: {error}")

        choices = data.get('choices') or []
        if not choices:
            raise ResolutionFailure(f"没有返回答案 (HTTP {response.status_code})")

        content = (choices[0].get('message') or {}).get('content') or ''
        return content.strip()


class ModelManager:
    """
    Resolves a prompt through the enabled model profiles in configured order.

    The first profile returning a non-empty answer wins; when every profile fails
    the last error is raised.
    """

    def __init__(self, profiles: List[ModelProfile], session: Optional[requests.Session] = None):
        session = session or requests.Session()
        self.clients = [ChatModelClient(p, session) for p in profiles if p.usable]

    @property
    def available(self) -> bool:
        return bool(self.clients)

    async def get_answer(self, prompt: str, token: CancellationToken,
                         timeout: float = HTTP_TIMEOUT) -> str:
        if not self.clients:
            raise ResolutionFailure("没有可用的模型，请先配置模型API Key")

        last_error: Optional[Exception] = None
        for client in self.clients:
            token.raise_if_cancelled()
            try:
                answer = await token.run(asyncio.to_thread(client.get_answer, prompt, timeout))
            except ResolutionFailure as e:
                logger.warning(f"Model {client.name} failed: {e}")
                last_error = e
                continue
            if answer:
                return answer
            logger.warning(f"Model {client.name} returned an empty answer")
            last_error = ResolutionFailure(f"{client.name} 返回空答案")

        raise ResolutionFailure(f"所有模型都调用失败: {last_error}")
