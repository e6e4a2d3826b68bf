"""
Quiz Listing Module
Read-only discovery of pending quizzes over plain HTTP, reusing the session
cookie saved by the last browser login.
"""

import time
import random
import logging
from typing import List, Optional, Tuple

import requests

from .api_utils import APIClient
from .cancellation import CancellationToken
from .config import ConfigStore
from .errors import AuthFailure, NavigationFailure
from .parser import BASE_URL, PageParser, course_interaction_url, parse_cookie_string, quiz_confirm_url
from .schema import QuizDescriptor

logger = logging.getLogger(__name__)

COURSE_LIST_URL = f"{BASE_URL}/web/index.php?c=clazzcourse&m=index"
REQUEST_PAUSE = (1.0, 3.0)


class QuizLister:
    """
    Lists in-progress quizzes without a browser.

    Blocking: meant to be run in a worker thread. Requests are spaced by a
    random pause so the crawl does not hammer the platform.
    """

    def __init__(self, config: ConfigStore, parser: Optional[PageParser] = None,
                 client: Optional[APIClient] = None, pause: Tuple[float, float] = REQUEST_PAUSE):
        self.config = config
        self.parser = parser or PageParser()
        self.client = client
        self.pause = pause

    def _client(self) -> APIClient:
        if self.client is None:
            cookie = self.config.user_data.cookie
            if not cookie:
                raise AuthFailure("Cookie为空，请先登录以获取Cookie")
            self.client = APIClient(cookies=parse_cookie_string(cookie))
        return self.client

    def _fetch(self, url: str) -> str:
        response = self._client().get(url, headers={'Referer': BASE_URL})
        return response.text

    def _sleep(self, token: Optional[CancellationToken]):
        if token is not None:
            token.raise_if_cancelled()
        low, high = self.pause
        if high > 0:
            time.sleep(random.uniform(low, high))

    def fetch_courses(self) -> List[dict]:
        try:
            html = self._fetch(COURSE_LIST_URL)
        except requests.RequestException as e:
            raise NavigationFailure(f"获取课程列表失败: {e}") from e
        return self.parser.parse_courses(html)

    def fetch_quizzes(self, token: Optional[CancellationToken] = None) -> List[QuizDescriptor]:
        """All in-progress quizzes of the open courses, completion taken from the ledger."""
        courses = self.fetch_courses()
        logger.info(f"Found {len(courses)} open courses")

        candidates = []
        seen = set()
        for course in courses:
            self._sleep(token)
            try:
                html = self._fetch(course_interaction_url(course['id']))
            except requests.RequestException as e:
                logger.warning(f"Skipping course {course['name']}: {e}")
                continue
            for quiz in self.parser.parse_interactions(html):
                if quiz['id'] in seen:
                    continue
                seen.add(quiz['id'])
                candidates.append((course, quiz))
                logger.debug(f"Found quiz {quiz['title']} ({quiz['id']}) in course {course['id']}")

        quizzes = []
        for course, quiz in candidates:
            self._sleep(token)
            url = self._answer_url(quiz_confirm_url(course['id'], quiz['id']))
            if not url:
                continue
            quizzes.append(QuizDescriptor(
                url=url,
                course_id=course['id'],
                course_name=course['name'],
                quiz_id=quiz['id'],
                name=quiz['title'],
                completed=self.config.is_url_completed(url),
            ))

        logger.info(f"Quizzes: {len(candidates)} in progress, {len(quizzes)} with an answer URL")
        return quizzes

    def _answer_url(self, confirm_url: str) -> str:
        try:
            html = self._fetch(confirm_url)
            url = self.parser.parse_hidden_url(html)
            if url:
                return url
            link = self.parser.parse_operate_link(html)
            if link:
                return self.parser.parse_hidden_url(self._fetch(link))
        except requests.RequestException as e:
            logger.warning(f"Confirm page {confirm_url} failed: {e}")
        return ''

    def close(self):
        if self.client is not None:
            self.client.close()
