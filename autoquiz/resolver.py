"""
Answer Resolver Module
Resolves extracted questions into answer strings through the model manager,
ten questions per composite prompt, degrading to one request per question when
a chunk fails.
"""

import re
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .api_utils import ModelManager
from .cancellation import CancellationToken
from .errors import CancelledByUser, ResolutionFailure
from .events import ProgressReporter
from .schema import AnswerSlot, Question, QuestionType

logger = logging.getLogger(__name__)

CHUNK_SIZE = 10
CHUNK_TIMEOUT = 180.0
QUESTION_TIMEOUT = 30.0

ANSWER_TAG_PATTERN = re.compile(r'【?答案(\d+)】?[：:\s]*((?:(?!答案\d)[^\n【])+)')
ORDINAL_PATTERN = re.compile(r'^(\d+)[.、)）]\s*([A-Za-z,，]+|[^\n]+)', re.MULTILINE)
TRAILING_PUNCTUATION = '.。;；、'


@dataclass(frozen=True)
class BatchAnswers:
    """Resolver output: one slot per question, in question order."""
    slots: Tuple[AnswerSlot, ...]
    cancelled: bool = False

    @property
    def answers(self) -> Tuple[str, ...]:
        return tuple(slot.answer_text for slot in self.slots)

    @property
    def answered(self) -> int:
        return sum(1 for slot in self.slots if not slot.empty)


def chunk_questions(questions: Sequence[Question], size: int = CHUNK_SIZE) -> List[Tuple[int, Sequence[Question]]]:
    """(start index, chunk) pairs covering the questions in order."""
    return [(start, questions[start:start + size]) for start in range(0, len(questions), size)]


def build_chunk_prompt(questions: Sequence[Question]) -> str:
    lines = [
        "请依次回答以下所有题目。每道题的答案用【答案X】标记，X是题号。",
        "回答格式要求：",
        "- 单选题：只回答选项字母，如 A",
        "- 多选题：回答所有正确选项字母，用逗号分隔，如 A,B,C",
        "- 填空题：直接回答答案内容",
        "",
    ]
    for i, q in enumerate(questions, 1):
        lines.append(f"【题目{i}】{q.type.value}")
        lines.append(q.content)
        lines.extend(f"{opt.label}.{opt.text}" for opt in q.options)
        lines.append("")

    lines.append("")
    lines.append("请按照格式回答所有题目：")
    lines.extend(f"【答案{i}】" for i in range(1, len(questions) + 1))
    return "\n".join(lines) + "\n"


def parse_chunk_response(response: str, count: int) -> List[str]:
    """Pull per-question answers out of a composite reply; unmatched indices stay empty."""
    answers = [''] * count

    for index, text in ANSWER_TAG_PATTERN.findall(response):
        idx = int(index)
        if 1 <= idx <= count:
            answers[idx - 1] = clean_answer(text)

    if sum(1 for a in answers if a) < count:
        for index, text in ORDINAL_PATTERN.findall(response):
            idx = int(index)
            if 1 <= idx <= count and not answers[idx - 1]:
                answers[idx - 1] = clean_answer(text)

    return answers


def clean_answer(text: str) -> str:
    return text.replace('。', '').replace('，', ',').strip()


def normalize_answer(answer: str, q_type: QuestionType) -> str:
    """Fit a raw model answer to the question type."""
    answer = clean_answer(answer)
    if not answer or q_type is QuestionType.FILL:
        return answer

    answer = re.sub(r'\s+', '', answer).rstrip(TRAILING_PUNCTUATION + ',')
    if q_type is QuestionType.SINGLE and ',' in answer:
        answer = answer.split(',')[0].strip()
    return answer


class AnswerResolver:
    """
    Resolves question lists into AnswerSlots.

    Chunks run strictly one after another. A failed chunk falls back to one
    request per question; a failed question leaves its slot empty.
    """

    def __init__(self, manager: ModelManager, reporter: Optional[ProgressReporter] = None,
                 chunk_size: int = CHUNK_SIZE, chunk_timeout: float = CHUNK_TIMEOUT,
                 question_timeout: float = QUESTION_TIMEOUT, chunk_gap: float = 1.0):
        self.manager = manager
        self.reporter = (reporter or ProgressReporter()).child(logger)
        self.chunk_size = chunk_size
        self.chunk_timeout = chunk_timeout
        self.question_timeout = question_timeout
        self.chunk_gap = chunk_gap

    async def resolve_batch(self, questions: Sequence[Question], token: CancellationToken,
                            quiz_name: str = '', quiz_position: int = 0, batch_size: int = 0) -> BatchAnswers:
        answers = [''] * len(questions)
        if not questions:
            return BatchAnswers(slots=())
        if not self.manager.available:
            self.reporter.log("没有可用的模型，请先配置模型API Key")
            return self._result(questions, answers)

        chunks = chunk_questions(questions, self.chunk_size)
        self.reporter.log(f"共 {len(questions)} 道题，分 {len(chunks)} 批处理")

        for number, (start, chunk) in enumerate(chunks, 1):
            if token.cancelled:
                self.reporter.log("任务已取消，停止获取答案")
                return self._result(questions, answers, cancelled=True)

            end = start + len(chunk)
            self.reporter.log(f"正在处理第 {number}/{len(chunks)} 批（题目 {start + 1}-{end}）...")

            try:
                chunk_answers = await self.resolve_chunk(chunk, token)
            except CancelledByUser:
                return self._result(questions, answers, cancelled=True)
            except (ResolutionFailure, asyncio.TimeoutError) as e:
                self.reporter.log(f"第 {number} 批请求失败: {str(e) or '请求超时'}，尝试逐题获取...")
                if not await self._resolve_one_by_one(start, chunk, answers, token):
                    return self._result(questions, answers, cancelled=True)
            else:
                for offset, answer in enumerate(chunk_answers):
                    answers[start + offset] = answer
                    self.reporter.debug(f"  → 第{start + offset + 1}题答案: {answer or '(空)'}")

            self.reporter.progress(f"【{quiz_name}】正在处理...", end, len(questions),
                                   quiz_name, quiz_position, batch_size)

            if end < len(questions):
                try:
                    await token.sleep(self.chunk_gap)
                except CancelledByUser:
                    return self._result(questions, answers, cancelled=True)

        self.reporter.log(f"批量获取完成，共 {len(answers)} 道题")
        return self._result(questions, answers)

    async def resolve_chunk(self, chunk: Sequence[Question], token: CancellationToken) -> List[str]:
        """One composite request for the chunk; raises ResolutionFailure when nothing parses."""
        prompt = build_chunk_prompt(chunk)
        response = await asyncio.wait_for(self.manager.get_answer(prompt, token), timeout=self.chunk_timeout)
        self.reporter.debug(f"=== API响应开始 ===\n{response}\n=== API响应结束 ===")

        parsed = parse_chunk_response(response, len(chunk))
        if not any(parsed):
            raise ResolutionFailure("无法从响应中解析出答案")
        return parsed

    async def resolve_question(self, question: Question, token: CancellationToken) -> str:
        return await asyncio.wait_for(self.manager.get_answer(question.render(), token),
                                      timeout=self.question_timeout)

    async def _resolve_one_by_one(self, start: int,
                                  chunk: Sequence[Question], answers: List[str],
                                  token: CancellationToken) -> bool:
        """Fill answers for a failed chunk question by question. False when cancelled."""
        for offset, question in enumerate(chunk):
            if token.cancelled:
                return False
            try:
                answers[start + offset] = await self.resolve_question(question, token)
            except CancelledByUser:
                return False
            except (ResolutionFailure, asyncio.TimeoutError) as e:
                self.reporter.log(f"第 {start + offset + 1} 题获取失败: {str(e) or '请求超时'}")
        return True

    @staticmethod
    def _result(questions: Sequence[Question], answers: List[str], cancelled: bool = False) -> BatchAnswers:
        slots = tuple(
            AnswerSlot(question_index=i, type=q.type, answer_text=normalize_answer(answers[i], q.type))
            for i, q in enumerate(questions)
        )
        return BatchAnswers(slots=slots, cancelled=cancelled)
