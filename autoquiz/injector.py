"""
Answer Injection Module
Writes resolved answers into the quiz page's form controls and drives the
submit / confirm dialog sequence.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .cancellation import CancellationToken
from .config import Timings
from .errors import CancelledByUser, InjectionMismatch, SubmissionUncertain
from .events import EventKind, ProgressReporter
from .extractor import RenderedPage
from .schema import AnswerSlot, Question, QuestionType

logger = logging.getLogger(__name__)

FILL_SCRIPT = r'''
async (answers) => {
    const sleep = (ms) => new Promise(resolve => setTimeout(resolve, ms));
    const subjects = document.querySelectorAll('.t-subject.t-item');
    const fillInputs = document.querySelectorAll('.tp-blank input.el-input__inner');
    const log = [];
    let filled = 0;
    let skipped = 0;

    const optionLetter = (label) => {
        const indexSpan = label.querySelector('span.option-index');
        if (indexSpan && indexSpan.textContent.trim()) {
            return indexSpan.textContent.trim().charAt(0).toUpperCase();
        }
        const second = label.querySelector('span:nth-child(2)');
        if (second) {
            const inner = second.querySelector('div > span:first-child');
            if (inner && inner.textContent.trim()) {
                return inner.textContent.trim().charAt(0).toUpperCase();
            }
        }
        for (const span of label.querySelectorAll('span')) {
            const text = span.textContent.trim();
            if (/^[A-Z][.．。]/.test(text)) {
                return text.charAt(0).toUpperCase();
            }
        }
        return '';
    };

    for (const item of answers) {
        try {
            const subject = item.index < subjects.length ? subjects[item.index] : null;

            if (item.type === 'fill') {
                let input = subject && subject.parentElement
                    ? subject.parentElement.querySelector('.tp-blank input.el-input__inner') : null;
                if (!input && item.fillIndex < fillInputs.length) {
                    input = fillInputs[item.fillIndex];
                }
                if (!input) {
                    log.push('题目' + (item.index + 1) + ': 未找到填空输入框');
                    skipped++;
                    continue;
                }
                input.value = item.answer;
                input.dispatchEvent(new Event('input', { bubbles: true }));
                input.dispatchEvent(new Event('change', { bubbles: true }));
                filled++;
                continue;
            }

            const optionDiv = subject && subject.parentElement
                ? subject.parentElement.querySelector('.t-option') : null;
            if (!optionDiv) {
                log.push('题目' + (item.index + 1) + ': 未找到optionDiv');
                skipped++;
                continue;
            }

            const wanted = item.answer.replace(/\s/g, '').toUpperCase().split(',');
            const targets = [];
            for (const label of optionDiv.querySelectorAll('label.el-radio, label.el-checkbox')) {
                const letter = optionLetter(label);
                if (letter && wanted.indexOf(letter) !== -1) {
                    targets.push({label: label, letter: letter});
                }
            }
            if (targets.length === 0) {
                log.push('题目' + (item.index + 1) + ': 没有匹配的选项 [' + wanted.join(',') + ']');
                skipped++;
                continue;
            }

            for (let k = 0; k < targets.length; k++) {
                const target = targets[k];
                target.label.scrollIntoView({block: 'center'});
                const control = target.label.querySelector('input');
                if (control) {
                    control.click();
                } else {
                    target.label.click();
                }
                if (item.type === 'multi' && k < targets.length - 1) {
                    await sleep(item.clickPause);
                }
            }
            log.push('题目' + (item.index + 1) + ': 点击 ' + targets.map(t => t.letter).join(','));
            filled++;
        } catch (e) {
            log.push('题目' + (item.index + 1) + '出错: ' + e.message);
            skipped++;
        }
    }
    return {filled: filled, skipped: skipped, log: log};
}
'''

CLICK_SUBMIT_SCRIPT = r'''
() => {
    const primary = document.querySelector('.con-bottom button.el-button--primary');
    if (primary) {
        primary.click();
        return true;
    }
    for (const btn of document.querySelectorAll('button.el-button')) {
        if (btn.textContent.includes('交卷')) {
            btn.click();
            return true;
        }
    }
    return false;
}
'''

CONFIRM_DIALOG_SCRIPT = r'''
() => {
    const box = document.querySelector('.el-message-box');
    if (!box) {
        return false;
    }
    const buttons = box.querySelectorAll('.el-message-box__btns button, .el-button');
    for (const btn of buttons) {
        if (btn.classList.contains('el-button--primary') ||
            btn.textContent.includes('确定') || btn.textContent.includes('确认')) {
            btn.click();
            return true;
        }
    }
    if (buttons.length > 0) {
        buttons[buttons.length - 1].click();
        return true;
    }
    return false;
}
'''

SECOND_CONFIRM_SCRIPT = r'''
() => {
    const box = document.querySelector('.el-message-box');
    if (!box) {
        return false;
    }
    const btn = box.querySelector('.el-button--primary, button');
    if (btn) {
        btn.click();
        return true;
    }
    return false;
}
'''


@dataclass(frozen=True)
class InjectionReport:
    filled: int
    skipped: int


def build_fill_plan(questions: Sequence[Question], slots: Sequence[AnswerSlot],
                    click_pause_ms: int = 100) -> List[Dict[str, Any]]:
    """
    Answer entries for the in-page fill script, one per non-empty slot.

    `index` addresses the question's stem element; `fillIndex` is the ordinal among
    fill questions, used when the input cannot be found beside the stem.
    """
    plan = []
    fill_ordinal = 0
    for question, slot in zip(questions, slots):
        fill_index = fill_ordinal
        if question.type is QuestionType.FILL:
            fill_ordinal += 1
        if slot.empty:
            continue
        plan.append({
            'index': slot.question_index,
            'type': question.type.code,
            'answer': slot.answer_text,
            'fillIndex': fill_index,
            'clickPause': click_pause_ms,
        })
    return plan


class AnswerInjector:
    """Fills every resolved answer into its page control in one script run."""

    def __init__(self, click_pause_ms: int = 100):
        self.click_pause_ms = click_pause_ms

    async def inject(self, page: RenderedPage, questions: Sequence[Question],
                     slots: Sequence[AnswerSlot], token: Optional[CancellationToken] = None) -> InjectionReport:
        token = token or CancellationToken()
        plan = build_fill_plan(questions, slots, self.click_pause_ms)
        unanswered = len(questions) - len(plan)
        if not plan:
            return InjectionReport(filled=0, skipped=unanswered)

        try:
            result = await token.run(page.evaluate(FILL_SCRIPT, plan))
        except CancelledByUser:
            raise
        except Exception as e:
            raise InjectionMismatch(f"执行批量填写失败: {e}") from e

        for line in (result or {}).get('log', []):
            logger.debug(f"JS: {line}")

        return InjectionReport(
            filled=int((result or {}).get('filled', 0)),
            skipped=int((result or {}).get('skipped', 0)) + unanswered,
        )


class QuizSubmitter:
    """
    Clicks the submit control and confirms the dialog(s).

    There is no server acknowledgement to check; completion is assumed once the
    click sequence ran.
    """

    def __init__(self, timings: Optional[Timings] = None, reporter: Optional[ProgressReporter] = None):
        self.timings = timings or Timings()
        self.reporter = (reporter or ProgressReporter()).child(logger)

    async def countdown(self, url: str, delay: int, token: CancellationToken):
        """Wait `delay` seconds before submitting, one submit_countdown event per second."""
        if delay <= 0:
            return
        self.reporter.log(f"等待 {delay} 秒后提交...")
        for elapsed in range(1, delay + 1):
            await token.sleep(self.timings.countdown_tick)
            self.reporter.emit(EventKind.SUBMIT_COUNTDOWN, url, elapsed, delay)
            remaining = delay - elapsed
            if remaining > 0:
                self.reporter.debug(f"距离提交还有 {remaining} 秒")
        self.reporter.log("延迟等待结束，开始提交")

    async def submit(self, page: RenderedPage, token: CancellationToken) -> bool:
        """
        Run the click sequence; returns whether the submit button was found.

        The confirm steps run even when the submit click errored; the error is
        raised as SubmissionUncertain only once the sequence is over.
        """
        self.reporter.log("正在提交测验...")
        await token.sleep(self.timings.submit_click)
        click_error = None
        try:
            clicked = await token.run(page.evaluate(CLICK_SUBMIT_SCRIPT))
        except CancelledByUser:
            raise
        except Exception as e:
            logger.debug(f"Submit click failed: {e}")
            clicked, click_error = False, e
        logger.debug("成功点击交卷按钮" if clicked else "未找到交卷按钮")

        await token.sleep(self.timings.confirm_wait)
        confirmed = await self._click(page, CONFIRM_DIALOG_SCRIPT, token)
        logger.debug("成功点击确认按钮" if confirmed else "未找到确认对话框")

        await token.sleep(self.timings.second_confirm_wait)
        if await self._click(page, SECOND_CONFIRM_SCRIPT, token):
            logger.debug("已确认第二个对话框")
        await token.sleep(self.timings.after_submit)
        if click_error is not None:
            raise SubmissionUncertain(f"点击交卷按钮失败: {click_error}")
        return bool(clicked)

    async def _click(self, page: RenderedPage, script: str, token: CancellationToken) -> bool:
        try:
            return bool(await token.run(page.evaluate(script)))
        except CancelledByUser:
            raise
        except Exception as e:
            logger.debug(f"Dialog click failed: {e}")
            return False
