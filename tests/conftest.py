import pytest

from autoquiz.cancellation import CancellationToken
from autoquiz.config import ConfigStore, ModelProfile, Timings
from autoquiz.errors import NavigationFailure
from autoquiz.events import EventBus, ProgressReporter
from autoquiz.extractor import DOM_QUERY_SCRIPT
from autoquiz.injector import CLICK_SUBMIT_SCRIPT, CONFIRM_DIALOG_SCRIPT, FILL_SCRIPT, SECOND_CONFIRM_SCRIPT
from autoquiz.schema import Option, Question, QuestionType


QUIZ_HTML = """<html><body><div class="con-list">
<div class="t-type SINGLE"></div><div class="t-subject t-item">植物进行光合作用的主要器官是</div>
<div class="t-option t-item"><label class="el-radio"><span class="option-index">A.</span> <span class="option-content">叶</span></label>
<label class="el-radio"><span class="option-index">B.</span> <span class="option-content">根</span></label><div class="topic-item">
</div></body></html>"""


class FakePage:
    """Stands in for a Playwright page: scripted evaluate() results and a static snapshot."""

    def __init__(self, dom_result=None, html=QUIZ_HTML, submit_found=True, dialog_found=True):
        self.dom_result = [] if dom_result is None else dom_result
        self.html = html
        self.submit_found = submit_found
        self.dialog_found = dialog_found
        self.calls = []
        self.content_calls = 0

    async def evaluate(self, expression, arg=None):
        self.calls.append((expression, arg))
        if expression == DOM_QUERY_SCRIPT:
            if isinstance(self.dom_result, Exception):
                raise self.dom_result
            return self.dom_result
        if expression == FILL_SCRIPT:
            return {'filled': len(arg), 'skipped': 0, 'log': ['ok']}
        if expression == CLICK_SUBMIT_SCRIPT:
            if isinstance(self.submit_found, Exception):
                raise self.submit_found
            return self.submit_found
        if expression == CONFIRM_DIALOG_SCRIPT:
            return self.dialog_found
        if expression == SECOND_CONFIRM_SCRIPT:
            return False
        return None

    async def content(self):
        self.content_calls += 1
        return self.html

    def scripts(self):
        return [expression for expression, _ in self.calls]


class FakeBrowser:
    """BrowserManager double recording navigation and form input."""

    def __init__(self, page=None, html='<html><div class="con-list"></div></html>',
                 container_visible=True, pages=None, unreachable=()):
        self.page = page or FakePage()
        self.html = html
        self.pages = pages or {}
        self.container_visible = container_visible
        self.unreachable = set(unreachable)
        self.visited = []
        self.filled = {}
        self.clicked = []
        self.started = False
        self.closed = 0
        self.current = ''

    async def start(self):
        self.started = True

    async def close(self):
        self.closed += 1

    async def goto(self, url, wait_for='domcontentloaded'):
        self.visited.append(url)
        if url in self.unreachable:
            raise NavigationFailure(f"加载页面失败: {url}")
        self.current = url

    async def get_html(self):
        return self.pages.get(self.current, self.html)

    async def wait_visible(self, selector, timeout):
        if selector == 'div.con-list':
            return self.container_visible
        return True

    async def fill(self, selector, value):
        self.filled[selector] = value

    async def click(self, selector):
        self.clicked.append(selector)

    async def cookie_string(self):
        return 'session=abc; uid=42'


class FakeManager:
    """ModelManager double: returns scripted replies in order, recording prompts."""

    def __init__(self, replies=None, on_call=None):
        self.replies = list(replies or [])
        self.prompts = []
        self.on_call = on_call
        self.available = True

    async def get_answer(self, prompt, token, timeout=60):
        token.raise_if_cancelled()
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call(len(self.prompts))
        if not self.replies:
            return ''
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def sample_questions():
    return [
        Question(QuestionType.SINGLE, '植物进行光合作用的主要器官是',
                 (Option('A', '叶'), Option('B', '根'), Option('C', '茎'))),
        Question(QuestionType.SINGLE, '水的化学式是',
                 (Option('A', 'CO2'), Option('B', 'O2'), Option('C', 'H2O'))),
        Question(QuestionType.MULTIPLE, '下列属于哺乳动物的是',
                 (Option('A', '鲸'), Option('B', '鲨鱼'), Option('C', '蝙蝠'))),
        Question(QuestionType.FILL, '绿色植物利用光能合成有机物的过程叫做'),
    ]


@pytest.fixture
def token():
    return CancellationToken()


@pytest.fixture
def timings():
    return Timings.instant()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    received = []
    bus.add_observer(received.append)
    return received


@pytest.fixture
def reporter(bus):
    return ProgressReporter(bus)


@pytest.fixture
def config(tmp_path):
    store = ConfigStore(str(tmp_path / 'user_data.json'))
    store.load()
    store.update_user('13800138000', 'secret')
    store.update_models([
        ModelProfile(name='DeepSeek', enabled=True, base_url='https://api.deepseek.com',
                     api_key='sk-test', model='deepseek-chat'),
    ])
    return store


COURSE_URL_C1 = 'https://www.mosoteach.cn/web/index.php?c=interaction&m=index&clazz_course_id=C1'

COURSE_LIST_HTML = f"""<html><body><ul>
<li class="class-item" data-id="C1" data-status="OPEN" data-url="{COURSE_URL_C1}">
  <span class="class-info-subject">生物学</span></li>
<li class="class-item" data-id="C2" data-status="CLOSED" data-url="/web/index.php?c=interaction&amp;clazz_course_id=C2">
  <span class="class-info-subject">已结课</span></li>
<li class="class-item" data-id="C3" data-status="OPEN"></li>
</ul></body></html>"""

INTERACTION_HTML = """<html><body>
<div class="interaction-row" data-id="Q1" data-type="QUIZ" data-row-status="IN_PRGRS" data-title="第一章测验"></div>
<div class="interaction-row" data-id="Q2" data-type="QUIZ" data-row-status="OVER" data-title="旧测验"></div>
<div class="interaction-row" data-id="Q3" data-type="HOMEWORK" data-row-status="IN_PRGRS" data-title="作业"></div>
<div class="interaction-row" data-id="Q4" data-type="QUIZ" data-row-status="IN_PRGRS">
  <span class="interaction-name">第二章测验</span></div>
<div class="interaction-row" data-id="Q1" data-type="QUIZ" data-row-status="IN_PRGRS" data-title="第一章测验"></div>
</body></html>"""

ANSWER_URL_Q1 = 'https://www.mosoteach.cn/web/index.php?c=interaction_quiz&m=person_quiz&id=Q1'
ANSWER_URL_Q4 = 'https://www.mosoteach.cn/web/index.php?c=interaction_quiz&m=person_quiz&id=Q4'

CONFIRM_Q1_HTML = f'<html><div class="hidden-box hidden-url">{ANSWER_URL_Q1}</div></html>'
CONFIRM_Q4_HTML = ('<html><div class="can-operate-color">'
                   '<a href="/web/index.php?c=interaction_quiz&amp;m=quiz_detail&amp;id=Q4">开始</a></div></html>')
OPERATE_Q4_URL = 'https://www.mosoteach.cn/web/index.php?c=interaction_quiz&m=quiz_detail&id=Q4'
OPERATE_Q4_HTML = f'<html><div class="hidden-box hidden-url"> {ANSWER_URL_Q4} </div></html>'
