"""
services/paste_parser.py

붙여넣은 텍스트 한 덩어리를 문항 + 보기로 나누는 결정적 파서.

지원 형식:
  What is 2+2?
  A) 3
  B) 4 *            ← 끝의 '*' 또는 '(correct)'는 정답 표시
  c. 5
  1- 22
  • 6
  Answer: B         ← 선택. 해당 라벨의 보기를 정답으로 표시
"""

import re
from typing import List, Optional

from pydantic import BaseModel

# a) / A. / (b) / 1- / 2: / • ...
_OPTION_PREFIX = re.compile(r"^(?:\(?\s*([A-Da-d1-9])\s*\)?[.)\-:]\s*|\s*[-•]\s+)")
_LABEL = re.compile(r"^\(?\s*([A-Da-d1-9])")
_ANSWER_LINE = re.compile(r"^\s*answer:\s*([A-D])\s*$", re.IGNORECASE | re.MULTILINE)
_CORRECT_MARK = re.compile(r"\*\s*$|\(correct\)$", re.IGNORECASE)


class ParsedOption(BaseModel):
    label: Optional[str] = None
    text: str
    correct: bool = False


class ParsedQuestion(BaseModel):
    question: str
    options: List[ParsedOption]

    @property
    def correct_options(self) -> List[str]:
        return [o.text for o in self.options if o.correct]


def parse_pasted(text: str) -> Optional[ParsedQuestion]:
    """
    붙여넣은 텍스트 → ParsedQuestion.

    보기 형식이 아닌 첫 줄을 문항으로 보고, 그 뒤의 보기 줄만 수집한다.
    보기가 하나도 없으면 None.
    """
    raw = text.replace("\r", "").strip()

    explicit_label = None
    m = _ANSWER_LINE.search(raw)
    if m:
        explicit_label = m.group(1).upper()

    lines = [
        line.strip()
        for line in raw.split("\n")
        if line.strip() and not line.strip().lower().startswith("answer:")
    ]
    if not lines:
        return None

    q_index = next((i for i, line in enumerate(lines) if not _OPTION_PREFIX.match(line)), 0)
    question = lines[q_index]

    options: List[ParsedOption] = []
    for line in lines[q_index + 1:]:
        if not _OPTION_PREFIX.match(line):
            continue

        label_match = _LABEL.match(line)
        label = label_match.group(1).upper() if label_match else None

        text_only = _OPTION_PREFIX.sub("", line, count=1).strip()
        correct = bool(_CORRECT_MARK.search(text_only))
        text_only = _CORRECT_MARK.sub("", text_only).strip()

        options.append(ParsedOption(label=label, text=text_only, correct=correct))

    if not options:
        return None

    if explicit_label:
        for opt in options:
            if opt.label == explicit_label:
                opt.correct = True
                break

    return ParsedQuestion(question=question, options=options)
