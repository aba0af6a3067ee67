"""
services/exam_service.py

채점, 결과 분석, 퀴즈 목록 병합 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel

from training_center_cbt.models.question_model import COURSE_TAGS, AnswerValue, Question, Quiz
from training_center_cbt.models.result_model import (
    NO_ANSWER,
    AnsweredQuestion,
    QuizResult,
    QuizStatus,
    UserQuizRecord,
)
from training_center_cbt.models.session_state import now_ms


def _is_blank(answer: Optional[AnswerValue]) -> bool:
    if answer is None:
        return True
    if isinstance(answer, list):
        return len(answer) == 0
    return answer == ""


def is_answer_correct(question: Question, user_answer: Optional[AnswerValue]) -> bool:
    """
    정답 판정.

    - checkbox: 순서와 무관한 집합 비교 ({B, A} == {A, B}, {A} != {A, B}).
    - 그 외:    정확히 일치.
    응답하지 않은 문제는 오답.
    """
    if _is_blank(user_answer):
        return False
    if question.type == "checkbox":
        if not isinstance(user_answer, list):
            user_answer = [user_answer]
        correct = question.answer if isinstance(question.answer, list) else [question.answer]
        return sorted(user_answer) == sorted(correct)
    return user_answer == question.answer


def grade(
    questions: List[Question],
    user_answers: Dict[str, AnswerValue],
    is_practice: bool = False,
    now: Optional[int] = None,
) -> QuizResult:
    """
    사용자 답안을 채점하여 QuizResult를 만든다.

    Args:
        questions:    표시 순서대로의 문항 리스트 (정답은 퀴즈 정의 기준).
        user_answers: {question.id: 답}
        is_practice:  연습 모드 결과 여부.

    Returns:
        answered_questions는 questions 순서를 유지한다.
    """
    score = 0
    answered: List[AnsweredQuestion] = []

    for q in questions:
        user_answer = user_answers.get(q.id)
        correct = is_answer_correct(q, user_answer)
        if correct:
            score += 1
        answered.append(AnsweredQuestion(
            question=q.question,
            user_answer=NO_ANSWER if _is_blank(user_answer) else user_answer,
            correct_answer=q.answer,
            is_correct=correct,
        ))

    return QuizResult(
        date=now_ms() if now is None else now,
        score=score,
        total=len(questions),
        answered_questions=answered,
        is_practice=is_practice,
    )


def progress_percent(question_count: int, user_answers: Dict[str, AnswerValue]) -> float:
    if not question_count:
        return 0.0
    answered = sum(1 for a in user_answers.values() if not _is_blank(a))
    return round(answered / question_count * 100, 1)


# ── 사용자별 퀴즈 목록 ────────────────────────────────────────────────────────

class UserQuizView(BaseModel):
    quiz: Quiz
    status: QuizStatus
    results: List[QuizResult]


def user_quiz_status(record: Optional[UserQuizRecord]) -> QuizStatus:
    """결과가 하나라도 있으면 Completed, 아니면 저장된 상태, 기록이 없으면 Not Started."""
    if record is None:
        return "Not Started"
    if record.results:
        return "Completed"
    return record.status


def merge_user_quizzes(
    quizzes: List[Quiz],
    records: Dict[str, UserQuizRecord],
) -> List[UserQuizView]:
    views = []
    for quiz in quizzes:
        record = records.get(quiz.id)
        views.append(UserQuizView(
            quiz=quiz,
            status=user_quiz_status(record),
            results=list(record.results) if record else [],
        ))
    return views


def group_by_course_tag(quizzes: List[Quiz]) -> Dict[str, List[Quiz]]:
    """과정 태그별 분류. 모든 태그 키가 항상 존재한다."""
    buckets: Dict[str, List[Quiz]] = {tag: [] for tag in COURSE_TAGS}
    for q in quizzes:
        buckets[q.course].append(q)
    return buckets


# ── 분석 (관리자) ─────────────────────────────────────────────────────────────

def average_score_percent(results: List[QuizResult]) -> int:
    """결과별 백분율 점수의 평균 (반올림). 결과가 없으면 0."""
    if not results:
        return 0
    return round(sum(r.percent for r in results) / len(results))


def question_stats(quiz: Quiz, results: List[QuizResult]) -> List[Dict[str, object]]:
    """
    문항별 정답률. 문항 본문 기준으로 집계하며 현재 퀴즈에 없는 문항은 무시한다.

    Returns:
        [{"question": str, "correct_attempts": int, "total_attempts": int,
          "correct_percentage": int}, ...]  퀴즈 문항 순서.
    """
    buckets: Dict[str, Dict[str, int]] = {
        q.question: {"correct": 0, "total": 0} for q in quiz.questions
    }

    for r in results:
        for aq in r.answered_questions:
            if aq.question not in buckets:
                continue
            buckets[aq.question]["total"] += 1
            if aq.is_correct:
                buckets[aq.question]["correct"] += 1

    stats = []
    for question, b in buckets.items():
        pct = round(b["correct"] / b["total"] * 100) if b["total"] else 0
        stats.append({
            "question": question,
            "correct_attempts": b["correct"],
            "total_attempts": b["total"],
            "correct_percentage": pct,
        })
    return stats


# ── 학생 대시보드 KPI ─────────────────────────────────────────────────────────

def student_kpis(quizzes: List[Quiz], records: Dict[str, UserQuizRecord]) -> Dict[str, object]:
    """
    정식(비연습) 결과만으로 최근 응시와 평균 점수를 계산한다.

    Returns:
        {"latest_attempt": {...} | None, "average_score": float | None, "attempts_count": int}
    """
    titles = {q.id: q.title for q in quizzes}
    official = []
    for quiz_id, record in records.items():
        if quiz_id not in titles:
            continue
        for r in record.results:
            if not r.is_practice:
                official.append((quiz_id, r))

    latest = None
    for quiz_id, r in official:
        if latest is None or r.date > latest["date"]:
            latest = {
                "date": r.date,
                "score": r.score,
                "total": r.total,
                "quiz_title": titles[quiz_id],
                "quiz_id": quiz_id,
            }

    average = None
    if official:
        average = round(sum(r.percent for _, r in official) / len(official), 1)

    return {
        "latest_attempt": latest,
        "average_score": average,
        "attempts_count": len(official),
    }
