import logging
import json
from datetime import date, timedelta
from typing import List, Dict, Any, Optional

from coaching.config import OPENAI_API_KEY, OPENAI_MODEL
from coaching.exams import ExamService
from database.row_store import RowStore, StoreError

from openai import OpenAI

logger = logging.getLogger()

EMPTY_ANALYSIS = {
    "analysis": "",
    "strengths": [],
    "weaknesses": [],
    "suggestions": [],
    "weekly_schedule": [],
}


class AIEngine:
    def __init__(self, api_key: str = None, model: str = None):
        api_key = api_key or OPENAI_API_KEY
        if not api_key:
            raise ValueError("OPENAI_API_KEY not found in environment variables")

        self.client = OpenAI(api_key=api_key)
        self.model = model or OPENAI_MODEL
        self.total_cost = 0.0

        # Pricing per 1M tokens
        self.pricing = {
            "input": 0.15,   # $0.15 per 1M input tokens
            "output": 0.60   # $0.60 per 1M output tokens
        }

    def calculate_cost(self, usage) -> float:
        """Calculate cost from OpenAI usage object"""
        if not usage:
            return 0.0

        input_cost = (usage.prompt_tokens / 1_000_000) * self.pricing["input"]
        output_cost = (usage.completion_tokens / 1_000_000) * self.pricing["output"]

        return input_cost + output_cost

    def analyze_student_with_cost(self, context: Dict[str, Any], coach_notes: str = None) -> tuple[Dict[str, Any], float]:
        """Coach-facing analysis of a student's recent exams and tasks, plus a drafted week"""
        system_prompt = """
        You are an expert educational coach. Analyse the student data you are given and
        return insights AND a drafted weekly schedule.

        Return ONLY a JSON object with this structure (no markdown):
        {
            "analysis": "Brief summary of performance, max 2 sentences",
            "strengths": ["1-2 strong areas"],
            "weaknesses": ["1-2 weak areas"],
            "suggestions": [
                {
                    "title": "Actionable task title",
                    "description": "Why this task helps",
                    "task_type": "todo"
                }
            ],
            "weekly_schedule": [
                {"day": "Monday", "focus": "Main focus", "tasks": ["Task 1", "Task 2"]}
            ]
        }

        Rules:
        - weekly_schedule covers all 7 days
        - task_type is one of todo, video, exam, nutrition, music, other
        - Be specific and encouraging
        """

        user_prompt = f"Coach notes / focus area: {coach_notes or 'General analysis'}\n\n"
        user_prompt += f"Student data:\n{json.dumps(context, indent=2, default=str)}"

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ]
            )

            cost = self.calculate_cost(response.usage)
            self.total_cost += cost
            logger.info(f"Student analysis cost: ${cost:.4f}")

            content = response.choices[0].message.content
            # Extract JSON from response
            start_idx = content.find('{')
            end_idx = content.rfind('}') + 1
            json_str = content[start_idx:end_idx]

            return {**EMPTY_ANALYSIS, **json.loads(json_str)}, cost

        except Exception as e:
            logger.error(f"Failed to analyse student: {e}")
            return dict(EMPTY_ANALYSIS), 0.0

    def get_total_cost(self) -> float:
        return self.total_cost


_ai: Optional[AIEngine] = None


def get_ai() -> AIEngine:
    """Shared engine, created on first use so a missing key only fails AI calls"""
    global _ai
    if _ai is None:
        _ai = AIEngine()
    return _ai


def collect_student_context(student_id: str, store: RowStore = None, days: int = 14) -> Dict[str, Any]:
    """Last three exam results and the past two weeks of tasks"""
    store = store or RowStore()
    results = ExamService(store).student_results(student_id)[:3]
    since = date.today() - timedelta(days=days)
    try:
        tasks = store.select('tasks', {'user_id': student_id, 'due_date__gte': since})
    except StoreError as e:
        logger.error(f"Error fetching recent tasks: {e}")
        tasks = []

    return {
        "exam_results": [
            {
                "exam": (r.get('exam') or {}).get('name'),
                "date": (r.get('exam') or {}).get('date'),
                "total_net": r['total_net'],
                "details": r['details'],
            }
            for r in results
        ],
        "recent_tasks": {
            "total": len(tasks),
            "completed": sum(1 for t in tasks if t['is_completed']),
            "sample": [{"title": t['title'], "is_completed": t['is_completed']} for t in tasks[:10]],
        },
    }


def suggestions_to_tasks(task_manager, student_id: str, suggestions: List[Dict[str, Any]],
                         due_date: date = None, coach_id: str = None) -> List[Dict[str, Any]]:
    """Turn accepted AI suggestions into tasks on the student's board"""
    due_date = due_date or date.today()
    created = []
    for suggestion in suggestions:
        if not suggestion.get('title'):
            continue
        task_type = suggestion.get('task_type') or 'todo'
        if task_type not in ('todo', 'video', 'exam', 'nutrition', 'music', 'other'):
            task_type = 'todo'
        created.append(task_manager.create_task(
            student_id,
            suggestion['title'],
            created_by=coach_id,
            description=suggestion.get('description'),
            task_type=task_type,
            due_date=due_date,
            assigned_by=coach_id,
        ))
    return created
