import logging
from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, List, Optional

from coaching.errors import NotFoundError, ValidationError
from database.row_store import RowStore, StoreError

logger = logging.getLogger()


@dataclass
class Section:
    key: str
    name: str
    question_count: int


@dataclass
class SectionScore:
    correct: int
    incorrect: int
    empty: int
    net: float


def score_section(section: Section, correct: int, incorrect: int) -> SectionScore:
    """Four wrong answers cancel one right answer"""
    if correct < 0 or incorrect < 0:
        raise ValidationError(f"{section.name}: answer counts cannot be negative")
    if correct + incorrect > section.question_count:
        raise ValidationError(
            f"{section.name}: {correct} correct + {incorrect} incorrect exceeds "
            f"{section.question_count} questions"
        )
    return SectionScore(
        correct=correct,
        incorrect=incorrect,
        empty=section.question_count - correct - incorrect,
        net=round(correct - incorrect / 4, 2),
    )


def score_exam(sections: List[Section], answers: Dict[str, Dict[str, int]]) -> Dict[str, Any]:
    """Score every section; sections without answers count as left blank"""
    known = {s.key for s in sections}
    unknown = set(answers) - known
    if unknown:
        raise ValidationError(f"Unknown exam sections: {', '.join(sorted(unknown))}")

    details = {}
    for section in sections:
        given = answers.get(section.key, {})
        details[section.key] = asdict(score_section(
            section, int(given.get('correct', 0) or 0), int(given.get('incorrect', 0) or 0),
        ))
    total = round(sum(d['net'] for d in details.values()), 2)
    return {'details': details, 'total_net': total}


def parse_sections(raw: List[Dict[str, Any]]) -> List[Section]:
    sections = []
    for item in raw or []:
        try:
            section = Section(key=str(item['key']), name=str(item['name']), question_count=int(item['question_count']))
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Invalid exam section: {item}")
        if section.question_count <= 0:
            raise ValidationError(f"{section.name}: question count must be positive")
        sections.append(section)
    if not sections:
        raise ValidationError("An exam template needs at least one section")
    if len({s.key for s in sections}) != len(sections):
        raise ValidationError("Section keys must be unique")
    return sections


class ExamService:
    def __init__(self, store: RowStore = None):
        self.store = store or RowStore()

    # Templates

    def create_template(self, name: str, sections: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not (name or '').strip():
            raise ValidationError("Template name is required")
        parsed = parse_sections(sections)
        template = self.store.insert('exam_templates', {
            'name': name.strip(),
            'sections': [asdict(s) for s in parsed],
        })
        logger.info(f"Exam template created: {template['name']} ({len(parsed)} sections)")
        return template

    def templates(self) -> List[Dict[str, Any]]:
        try:
            return self.store.select('exam_templates', order=['-created_at'])
        except StoreError as e:
            logger.error(f"Error fetching exam templates: {e}")
            return []

    def get_template(self, template_id: str) -> Dict[str, Any]:
        template = self.store.get('exam_templates', template_id)
        if not template:
            raise NotFoundError(f"Exam template {template_id} not found")
        return template

    # Exams

    def create_exam(self, name: str, template_id: str, exam_date=None) -> Dict[str, Any]:
        if not (name or '').strip():
            raise ValidationError("Exam name is required")
        self.get_template(template_id)
        return self.store.insert('exams', {
            'name': name.strip(),
            'template_id': template_id,
            'date': exam_date or date.today(),
        })

    def exams(self) -> List[Dict[str, Any]]:
        try:
            exams = self.store.select('exams', order=['-date'])
        except StoreError as e:
            logger.error(f"Error fetching exams: {e}")
            return []
        templates = {t['id']: t for t in self.templates()}
        return [{**exam, 'template': templates.get(exam['template_id'])} for exam in exams]

    def get_exam(self, exam_id: str) -> Dict[str, Any]:
        exam = self.store.get('exams', exam_id)
        if not exam:
            raise NotFoundError(f"Exam {exam_id} not found")
        return exam

    # Results

    def save_result(self, user_id: str, exam_id: str, answers: Dict[str, Dict[str, int]]) -> Dict[str, Any]:
        """Score and store one student's result; a second save replaces the first"""
        exam = self.get_exam(exam_id)
        sections = parse_sections(self.get_template(exam['template_id'])['sections'])
        scored = score_exam(sections, answers)
        result = self.store.upsert('exam_results', {
            'user_id': user_id,
            'exam_id': exam_id,
            **scored,
        }, conflict=('user_id', 'exam_id'))
        logger.info(f"📊 Exam result saved for {user_id}: net {scored['total_net']}")
        return result

    def student_results(self, user_id: str) -> List[Dict[str, Any]]:
        """Results with their exam, newest exam first"""
        try:
            results = self.store.select('exam_results', {'user_id': user_id})
        except StoreError as e:
            logger.error(f"Error fetching exam results: {e}")
            return []
        exams = {e['id']: e for e in self.exams()}
        rows = [{**r, 'exam': exams.get(r['exam_id'])} for r in results]
        return sorted(rows, key=lambda r: (r['exam'] or {}).get('date') or date.min, reverse=True)

    def net_trend(self, user_id: str) -> List[Dict[str, Any]]:
        """Chronological total nets for the progress chart"""
        points = [
            {'exam': r['exam']['name'], 'date': r['exam']['date'], 'total_net': r['total_net']}
            for r in self.student_results(user_id) if r['exam']
        ]
        return list(reversed(points))

    def result_summary(self, result: Optional[Dict[str, Any]]) -> str:
        if not result:
            return "No result"
        parts = [f"{key}: {d['net']}" for key, d in (result.get('details') or {}).items()]
        return f"Total net {result['total_net']} ({', '.join(parts)})"
