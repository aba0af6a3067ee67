"""
services/quiz_generator.py

관리자용 AI 퀴즈 초안 생성.

  PDF 업로드 → PyMuPDF로 페이지별 텍스트 추출 → Chat Completions(JSON 모드) 1회 호출
  → 항목별 Question 검증 → 저장되지 않은 초안 Quiz

rate limit과 일시적 연결/서버 오류만 지수 백오프로 재시도한다.
검증에 실패한 문항은 버리고, 남는 문항이 없으면 RuntimeError.
"""

import json
import logging
import re
import time
from typing import Any, List, Optional

import fitz  # PyMuPDF
from openai import APIConnectionError, APIError, OpenAI, RateLimitError
from pydantic import ValidationError

from config import MAX_GENERATED_QUESTIONS, MAX_PDF_PAGES, MAX_SOURCE_CHARS, MODEL_NAME
from training_center_cbt.models.question_model import Question, Quiz
from training_center_cbt.models.session_state import now_ms

logger = logging.getLogger(__name__)

_MIN_TOPIC_CHARS = 3

# 재시도 정책: (최대 시도 횟수, 첫 대기 초)
_API_ATTEMPTS, _API_BACKOFF = 3, 1.0
_RATE_LIMIT_ATTEMPTS, _RATE_LIMIT_BACKOFF = 5, 2.0
_TRANSIENT_STATUS = {500, 502, 503, 504}

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

_SYSTEM_PROMPT = """\
You write multiple-choice quiz questions for a training center.

Use ONLY the source material in the user message. Write exactly the requested
number of questions about the given topic.

Reply with one JSON object and nothing else:
{"questions": [
  {"question": "<text>",
   "type": "multiple-choice",
   "options": ["<4 distinct options>"],
   "answer": "<one option, copied verbatim>"}
]}

Do not mention page numbers in the questions.
"""


def validate_request(file_bytes: bytes, topic: str, num_questions: int) -> None:
    """입력 검증. 실패 시 화면에 그대로 보여줄 메시지로 ValueError."""
    if not topic or len(topic.strip()) < _MIN_TOPIC_CHARS:
        raise ValueError("Topic must be at least 3 characters long.")
    if num_questions < 1:
        raise ValueError("Please enter a number of questions.")
    if num_questions > MAX_GENERATED_QUESTIONS:
        raise ValueError(
            f"You can generate up to {MAX_GENERATED_QUESTIONS} questions at a time."
        )
    if not file_bytes:
        raise ValueError("PDF file is required.")


def extract_pdf_text(file_bytes: bytes) -> str:
    """PDF 바이트 → "[PAGE n]" 머리표가 붙은 전체 텍스트."""
    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as e:
        logger.warning(f"PDF 열기 실패: {type(e).__name__}: {e}")
        raise ValueError("The uploaded file is not a readable PDF.") from e

    with doc:
        if doc.page_count > MAX_PDF_PAGES:
            raise ValueError(
                f"PDF has too many pages ({doc.page_count}). "
                f"Up to {MAX_PDF_PAGES} pages are supported."
            )
        return "\n".join(f"[PAGE {page.number + 1}]\n{page.get_text()}" for page in doc)


def generate_quiz(
    file_bytes: bytes,
    topic: str,
    num_questions: int,
    api_key: str = "",
    client: Optional[OpenAI] = None,
) -> Quiz:
    """
    PDF + 주제 → 퀴즈 초안. 저장은 호출자 몫.

    Raises:
        ValueError:   입력 검증 실패, 읽을 수 없거나 텍스트가 없는 PDF.
        RuntimeError: API 키 없음, API 실패, 쓸 수 있는 문항 없음.
    """
    validate_request(file_bytes, topic, num_questions)
    topic = topic.strip()

    source = extract_pdf_text(file_bytes)
    if not source.strip():
        raise ValueError("No text could be extracted from the PDF.")
    source = source[:MAX_SOURCE_CHARS]

    if client is None:
        if not api_key:
            raise RuntimeError("OpenAI API key is missing.")
        client = OpenAI(api_key=api_key)

    raw = _call_openai(
        client,
        f"Topic: {topic}\nNumber of questions: {num_questions}\n\nSource material:\n{source}",
    )
    if raw is None:
        raise RuntimeError("Failed to generate quiz. The AI service did not respond.")

    stamp = now_ms()
    questions = _parse_response_to_questions(raw, stamp)[:num_questions]
    if not questions:
        raise RuntimeError("Failed to generate quiz. The AI model returned an unexpected result.")

    logger.info(f"퀴즈 초안 생성: '{topic}' {len(questions)}/{num_questions}문항")
    return Quiz(
        id=f"draft-{stamp}",
        title=topic,
        description=f"An AI-generated quiz about {topic}",
        questions=questions,
    )


# ── 응답 해석 ────────────────────────────────────────────────────────────────

def _clean_json_response(response_text: str) -> str:
    """코드 펜스와 앞뒤 잡담을 걷어내고 JSON 부분만 남긴다. 없으면 ""."""
    if not response_text:
        return ""
    fenced = _FENCE.search(response_text)
    text = fenced.group(1) if fenced else response_text

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return ""
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    if end < start:
        return ""
    return text[start:end + 1]


def _question_items(raw_response: str) -> List[Any]:
    cleaned = _clean_json_response(raw_response)
    if not cleaned:
        return []
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"모델 응답이 JSON이 아닙니다: {e}")
        return []
    if isinstance(data, dict):
        data = data.get("questions", [])
    return data if isinstance(data, list) else []


def _match_option(answer: Any, options: Any) -> Any:
    """정답이 보기와 대소문자/공백만 다르면 보기 원문으로 맞춘다."""
    if not isinstance(answer, str) or not isinstance(options, list) or answer in options:
        return answer
    wanted = answer.strip().casefold()
    return next(
        (o for o in options if isinstance(o, str) and o.strip().casefold() == wanted),
        answer,
    )


def _parse_response_to_questions(raw_response: str, stamp: int) -> List[Question]:
    questions: List[Question] = []
    for idx, item in enumerate(_question_items(raw_response)):
        if not isinstance(item, dict):
            logger.warning(f"생성 문항 {idx}: 객체가 아님, 건너뜀")
            continue
        fields = {"type": "multiple-choice", **item, "id": f"gen-{stamp}-{idx}"}
        fields["answer"] = _match_option(fields.get("answer"), fields.get("options"))
        try:
            questions.append(Question.model_validate(fields))
        except ValidationError as e:
            logger.warning(f"생성 문항 {idx}: 검증 오류 {e.error_count()}개, 건너뜀")
    return questions


# ── OpenAI 호출 ──────────────────────────────────────────────────────────────

def _retry_delay(error: Exception, attempt: int) -> Optional[float]:
    """다음 재시도까지 대기할 초. 재시도하지 않으면 None."""
    if isinstance(error, RateLimitError):
        if attempt < _RATE_LIMIT_ATTEMPTS:
            return _RATE_LIMIT_BACKOFF * 2 ** (attempt - 1)
        return None
    if isinstance(error, APIError):
        transient = (
            isinstance(error, APIConnectionError)
            or getattr(error, "status_code", None) in _TRANSIENT_STATUS
        )
        if transient and attempt < _API_ATTEMPTS:
            return _API_BACKOFF * 2 ** (attempt - 1)
    return None


def _call_openai(client: OpenAI, user_content: str) -> Optional[str]:
    """JSON 모드 호출. 최종 실패 시 None."""
    attempt = 0
    while True:
        attempt += 1
        try:
            response = client.chat.completions.create(
                model=MODEL_NAME,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": user_content},
                ],
                temperature=0.3,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            delay = _retry_delay(e, attempt)
            if delay is None:
                logger.error(f"OpenAI 호출 실패 ({attempt}회차): {type(e).__name__}: {e}")
                return None
            logger.warning(f"OpenAI 일시 오류, {delay:.1f}초 후 재시도 ({attempt}회차): {e}")
            time.sleep(delay)
            continue
        return response.choices[0].message.content
