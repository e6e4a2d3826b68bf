"""
Quiz Data Models
Value types shared by the extractor, resolver, injector and session controller.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Any, Tuple


class QuestionType(Enum):
    """Question kinds found on a quiz page. The value is the label used in prompts."""
    FILL = "填空题"
    SINGLE = "单选题"
    MULTIPLE = "多选题"

    @classmethod
    def from_marker(cls, marker: str) -> "QuestionType":
        """Classify a type marker's class attribute (MULTI / FILL token, default single)."""
        if 'MULTI' in marker:
            return cls.MULTIPLE
        if 'FILL' in marker:
            return cls.FILL
        return cls.SINGLE

    @property
    def code(self) -> str:
        """Short code understood by the in-page injection script."""
        return {
            QuestionType.FILL: 'fill',
            QuestionType.SINGLE: 'single',
            QuestionType.MULTIPLE: 'multi',
        }[self]


@dataclass(frozen=True)
class Option:
    label: str
    text: str


@dataclass(frozen=True)
class Question:
    type: QuestionType
    content: str
    options: Tuple[Option, ...] = ()

    def __post_init__(self):
        # Fill questions never carry options
        if self.type is QuestionType.FILL and self.options:
            object.__setattr__(self, 'options', ())
        elif not isinstance(self.options, tuple):
            object.__setattr__(self, 'options', tuple(self.options))

    def render(self) -> str:
        """Type, stem and options as sent to a model for a single question."""
        lines = [self.type.value, self.content]
        lines.extend(f"{opt.label}.{opt.text}" for opt in self.options)
        return "\n".join(lines)


@dataclass(frozen=True)
class AnswerSlot:
    question_index: int
    type: QuestionType
    answer_text: str = ''

    @property
    def empty(self) -> bool:
        return not self.answer_text


@dataclass
class QuizDescriptor:
    url: str
    course_id: str = ''
    course_name: str = ''
    quiz_id: str = ''
    name: str = ''
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape used by the front-end."""
        return {
            'url': self.url,
            'name': self.name,
            'courseId': self.course_id,
            'courseName': self.course_name,
            'quizId': self.quiz_id,
            'completed': self.completed,
        }

    def as_record(self) -> Dict[str, Any]:
        return asdict(self)
