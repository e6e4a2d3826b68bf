"""
Question Extractor Module
Turns a rendered quiz page into an ordered list of typed questions.

Two strategies are tried in fixed order: a DOM query executed inside the live
page, then a regex pass over a static HTML snapshot. Both pair the i-th type
marker with the i-th stem and the i-th option block, so the resulting order is
the page's top-to-bottom order relied upon by the injector.
"""

import re
import logging
from typing import Any, Dict, List, Optional, Protocol

from .cancellation import CancellationToken
from .errors import CancelledByUser, ExtractionFailure
from .parser import clean_html
from .schema import Option, Question, QuestionType

logger = logging.getLogger(__name__)

DOM_QUERY_SCRIPT = r'''
() => {
    const results = [];
    const typeElements = document.querySelectorAll(
        'div[class="t-type SINGLE"], div[class="t-type MULTI"], div[class="t-type FILL"]');
    const stemElements = document.querySelectorAll('div.t-subject.t-item');
    const optionBlocks = document.querySelectorAll('div.t-option.t-item');
    const count = Math.min(typeElements.length, stemElements.length);

    for (let i = 0; i < count; i++) {
        const marker = typeElements[i].className;
        const isFill = marker.indexOf('MULTI') === -1 && marker.indexOf('FILL') !== -1;
        const options = [];
        if (i < optionBlocks.length && !isFill) {
            const rows = optionBlocks[i].querySelectorAll('label.el-radio, label.el-checkbox');
            for (const row of rows) {
                const indexSpan = row.querySelector('span.option-index');
                const contentSpan = row.querySelector('span.option-content');
                if (indexSpan && contentSpan) {
                    options.push({
                        label: indexSpan.innerText.trim().replace('.', '').replace(/\s/g, ''),
                        text: contentSpan.innerText.trim()
                    });
                }
            }
        }
        results.push({marker: marker, stem: stemElements[i].innerText.trim(), options: options});
    }
    return results;
}
'''

TYPE_PATTERN = re.compile(r'<div class="t-type (SINGLE|MULTI|FILL)">')
STEM_PATTERN = re.compile(r'<div class="t-subject t-item[^"]*"[^>]*>([^<]+)')
OPTION_BLOCK_PATTERN = re.compile(
    r'<div class="t-option t-item">([\s\S]*?)(?:<div class="t-upload|<div class="topic-item"|$)')
OPTION_PATTERN = re.compile(
    r'<span class="option-index">([A-Z])\.[^<]*</span>\s*<span class="option-content[^"]*"[^>]*>([^<]+)')


class RenderedPage(Protocol):
    """The slice of a Playwright page the extractor needs."""

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def content(self) -> str: ...


def summarize(questions: List[Question]) -> str:
    counts = {t: 0 for t in QuestionType}
    for q in questions:
        counts[q.type] += 1
    return (f"共 {len(questions)} 题（单选 {counts[QuestionType.SINGLE]}, "
            f"多选 {counts[QuestionType.MULTIPLE]}, 填空 {counts[QuestionType.FILL]}）")


class DomQueryStrategy:
    """Query type markers, stems and option blocks inside the live page."""

    name = 'dom'

    async def extract(self, page: RenderedPage) -> List[Question]:
        try:
            raw = await page.evaluate(DOM_QUERY_SCRIPT)
        except Exception as e:
            raise ExtractionFailure(f"JavaScript获取题目失败: {e}") from e

        if not isinstance(raw, list):
            raise ExtractionFailure(f"Unexpected DOM query result: {type(raw).__name__}")

        questions = []
        for item in raw:
            q_type = QuestionType.from_marker(item.get('marker', ''))
            options = tuple(
                Option(label=opt['label'], text=opt['text'])
                for opt in item.get('options') or []
                if opt.get('label') and opt.get('text')
            )
            questions.append(Question(type=q_type, content=item.get('stem', ''), options=options))
        return questions


class RegexStrategy:
    """Positional regex pass over a static HTML snapshot."""

    name = 'regex'

    async def extract(self, page: RenderedPage) -> List[Question]:
        html = await page.content()
        return self.parse(html)

    def parse(self, html: str) -> List[Question]:
        types = TYPE_PATTERN.findall(html)
        stems = STEM_PATTERN.findall(html)
        blocks = OPTION_BLOCK_PATTERN.findall(html)
        logger.debug(f"Regex parse: {len(types)} type markers, {len(stems)} stems, {len(blocks)} option blocks")

        questions = []
        for i in range(min(len(types), len(stems))):
            q_type = QuestionType.from_marker(types[i])
            options = ()
            if i < len(blocks) and q_type is not QuestionType.FILL:
                options = tuple(
                    Option(label=label, text=clean_html(text))
                    for label, text in OPTION_PATTERN.findall(blocks[i])
                )
            questions.append(Question(type=q_type, content=clean_html(stems[i]), options=options))
        return questions


class QuestionExtractor:
    """
    Runs the extraction strategies in order and returns the first non-empty result.

    The regex strategy is the last resort: its result is returned even when empty,
    which callers read as "no answerable content on this page".
    """

    def __init__(self, strategies: Optional[List[Any]] = None):
        self.strategies = strategies or [DomQueryStrategy(), RegexStrategy()]

    async def extract(self, page: RenderedPage, token: Optional[CancellationToken] = None) -> List[Question]:
        token = token or CancellationToken()
        questions: List[Question] = []

        for position, strategy in enumerate(self.strategies):
            last = position == len(self.strategies) - 1
            try:
                questions = await token.run(strategy.extract(page))
            except CancelledByUser:
                raise
            except ExtractionFailure as e:
                logger.debug(f"{strategy.name} extraction failed: {e}")
                if last:
                    return []
                continue
            except Exception as e:
                logger.warning(f"{strategy.name} extraction error: {e}")
                if last:
                    return []
                continue

            if questions:
                logger.info(f"{strategy.name} 解析完成: {summarize(questions)}")
                return questions
            if not last:
                logger.debug(f"{strategy.name} found no questions, falling back")

        return questions
