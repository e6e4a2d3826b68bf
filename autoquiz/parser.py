"""
Page Parser Module
Markup helpers: "cannot answer" sentinel detection, tag stripping, and parsing
of the course / interaction / confirm pages used for quiz discovery.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from bs4 import BeautifulSoup
from urllib.parse import urljoin

logger = logging.getLogger(__name__)

BASE_URL = 'https://www.mosoteach.cn'

TAG_PATTERN = re.compile(r'<[^>]*>')
SPACE_PATTERN = re.compile(r'\s+')


def clean_html(html: str) -> str:
    """Strip tags and collapse whitespace."""
    text = TAG_PATTERN.sub('', html).strip()
    return SPACE_PATTERN.sub(' ', text)


@dataclass(frozen=True)
class SentinelPhrases:
    """
    Literal markup substrings meaning a quiz cannot currently be answered.

    `unanswerable` is checked on every inspection; `blank_page` right after
    navigation; `disabled` only once the question container failed to appear.
    """
    unanswerable: Tuple[str, ...] = (
        '已用尽作答机会',
        '未交卷',
        '请联系老师',
        '重新参与测试',
        'pic_nothing',
    )
    blank_page: Tuple[str, ...] = (
        'class="blank"></div></div></div>',
        '<div class="blank"></div>',
    )
    disabled: Tuple[str, ...] = (
        'm-disable',
    )

    @property
    def after_navigation(self) -> Tuple[str, ...]:
        return self.unanswerable + self.blank_page

    @property
    def after_timeout(self) -> Tuple[str, ...]:
        return self.unanswerable + self.disabled


def find_sentinel(html: str, phrases: Tuple[str, ...]) -> Optional[str]:
    """Return the first phrase present in the markup, if any."""
    for phrase in phrases:
        if phrase in html:
            return phrase
    return None


def parse_cookie_string(cookie: str) -> Dict[str, str]:
    """Split a `name=value; name2=value2` header string."""
    cookies = {}
    for pair in cookie.split(';'):
        pair = pair.strip()
        if not pair or '=' not in pair:
            continue
        name, value = pair.split('=', 1)
        cookies[name.strip()] = value.strip()
    return cookies


class PageParser:
    """
    Parses the platform's listing pages for quiz discovery.
    """

    def __init__(self, base_url: str = BASE_URL):
        """
        Initialize parser with base URL for resolving relative links.

        Args:
            base_url: Base URL of the platform
        """
        self.base_url = base_url

    def parse_courses(self, html: str) -> List[Dict[str, str]]:
        """
        Extract open courses from the course list page.

        Returns:
            List of {'id', 'url', 'name'} for courses with data-status OPEN
        """
        soup = BeautifulSoup(html, 'lxml')
        courses = []
        total = 0

        for item in soup.select('li.class-item'):
            total += 1
            if item.get('data-status') != 'OPEN':
                continue
            course_id = item.get('data-id', '')
            if not course_id:
                continue
            subject = item.select_one('.class-info-subject')
            name = subject.get_text(strip=True) if subject else ''
            courses.append({
                'id': course_id,
                'url': self._resolve_url(item.get('data-url', '')) if item.get('data-url') else '',
                'name': name or '未命名课程',
            })

        logger.debug(f"Course list: {total} total, {len(courses)} open")
        return courses

    def parse_interactions(self, html: str) -> List[Dict[str, str]]:
        """
        Extract in-progress quizzes from a course's interaction page.

        Returns:
            List of {'id', 'title'} for rows of type QUIZ with status IN_PRGRS
        """
        soup = BeautifulSoup(html, 'lxml')
        quizzes = []

        for row in soup.select('div.interaction-row'):
            if row.get('data-type') != 'QUIZ':
                continue
            if row.get('data-row-status') != 'IN_PRGRS':
                continue
            quiz_id = row.get('data-id', '')
            if not quiz_id:
                continue
            title = row.get('data-title', '')
            if not title:
                name_el = row.select_one('span.interaction-name')
                title = name_el.get_text(strip=True) if name_el else ''
            quizzes.append({'id': quiz_id, 'title': title or '未命名题库'})

        return quizzes

    def parse_hidden_url(self, html: str) -> str:
        """Answer URL hidden in the quiz confirm page."""
        soup = BeautifulSoup(html, 'lxml')
        box = soup.select_one('div.hidden-box.hidden-url')
        return box.get_text(strip=True) if box else ''

    def parse_operate_link(self, html: str) -> str:
        """Fallback link on the confirm page leading to the page that holds the URL."""
        soup = BeautifulSoup(html, 'lxml')
        link = soup.select_one('div.can-operate-color a')
        if link and link.get('href'):
            return self._resolve_url(link['href'])
        return ''

    def _resolve_url(self, url: str) -> str:
        """Resolve relative URL to absolute."""
        if url.startswith(('http://', 'https://')):
            return url
        return urljoin(self.base_url, url)


def course_interaction_url(course_id: str) -> str:
    return f"{BASE_URL}/web/index.php?c=interaction&m=index&clazz_course_id={course_id}"


def quiz_confirm_url(course_id: str, quiz_id: str) -> str:
    return (f"{BASE_URL}/web/index.php?c=interaction_quiz&m=start_quiz_confirm"
            f"&clazz_course_id={course_id}&id={quiz_id}&order_item=group")
