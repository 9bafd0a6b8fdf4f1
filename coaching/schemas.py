from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any
from datetime import date
import datetime

from coaching.ordering import Edge


class UserCreate(BaseModel):
    email: str
    name: str
    roles: List[Literal["student", "coach", "admin"]] = Field(default_factory=lambda: ["student"])
    specialties: List[str] = Field(default_factory=list)


class UserUpdate(BaseModel):
    name: Optional[str] = None
    roles: Optional[List[Literal["student", "coach", "admin"]]] = None
    specialties: Optional[List[str]] = None
    preferences: Optional[Dict[str, Any]] = None


class CoachAssign(BaseModel):
    student_id: str
    coach_id: str
    role_label: str = "General Coach"


class TaskCreate(BaseModel):
    title: str
    user_id: Optional[str] = None  # defaults to the caller; coaches assign to students
    description: Optional[str] = None
    task_type: Literal["todo", "video", "exam", "nutrition", "music", "other"] = "todo"
    due_date: Optional[date] = None
    due_time: Optional[str] = None
    duration_minutes: int = 0
    parent_id: Optional[str] = None
    project_id: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    task_metadata: Dict[str, Any] = Field(default_factory=dict)
    is_private: bool = False
    relationship_id: Optional[str] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    task_type: Optional[Literal["todo", "video", "exam", "nutrition", "music", "other"]] = None
    due_date: Optional[date] = None
    due_time: Optional[str] = None
    duration_minutes: Optional[int] = None
    settings: Optional[Dict[str, Any]] = None
    task_metadata: Optional[Dict[str, Any]] = None
    is_private: Optional[bool] = None


class TaskMove(BaseModel):
    parent_id: Optional[str] = None
    index: Optional[int] = Field(None, ge=0)
    due_date: Optional[date] = None


class TaskReorder(BaseModel):
    source_id: str
    target_id: str
    edge: Edge = Edge.BEFORE


class RowPatch(BaseModel):
    id: str
    patch: Dict[Literal["sort_order", "parent_id", "due_date"], Any]


class PlanApply(BaseModel):
    updates: List[RowPatch]


class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    status: Literal["planning", "active", "on-hold", "completed"] = "active"
    priority: Literal["low", "medium", "high", "critical"] = "medium"
    module: Literal["exam", "nutrition", "music", "coding", "general"] = "general"
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Literal["planning", "active", "on-hold", "completed"]] = None
    priority: Optional[Literal["low", "medium", "high", "critical"]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class HabitCreate(BaseModel):
    name: str
    description: Optional[str] = None
    frequency: Literal["daily", "weekly", "monthly"] = "daily"
    target_type: Literal["boolean", "count", "duration"] = "boolean"
    target_value: Optional[int] = None
    color: str = "indigo"
    icon: str = "check"


class HabitUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[Literal["daily", "weekly", "monthly"]] = None
    target_type: Optional[Literal["boolean", "count", "duration"]] = None
    target_value: Optional[int] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None


class HabitToggle(BaseModel):
    day: Optional[date] = None
    completed: Optional[bool] = None  # None flips the current state
    count: int = 1
    duration: Optional[int] = None
    notes: Optional[str] = None


class ExamSectionIn(BaseModel):
    key: str
    name: str
    question_count: int = Field(..., gt=0)


class ExamTemplateCreate(BaseModel):
    name: str
    sections: List[ExamSectionIn]


class ExamCreate(BaseModel):
    name: str
    template_id: str
    date: Optional[datetime.date] = None


class SectionAnswers(BaseModel):
    correct: int = Field(0, ge=0)
    incorrect: int = Field(0, ge=0)


class ExamResultIn(BaseModel):
    user_id: str
    answers: Dict[str, SectionAnswers]


class TemplateApply(BaseModel):
    template_id: str
    student_id: str
    start_date: date


class ProjectToTemplate(BaseModel):
    name: Optional[str] = None


class AnalysisRequest(BaseModel):
    coach_notes: Optional[str] = None


class SuggestionIn(BaseModel):
    title: str
    description: Optional[str] = None
    task_type: str = "todo"


class SuggestionsAccept(BaseModel):
    suggestions: List[SuggestionIn]
    due_date: Optional[date] = None


class SubjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    topics: List[str] = Field(default_factory=list)


class SubjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None


class TopicCreate(BaseModel):
    name: str
    description: Optional[str] = None


class TopicUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ResourceCreate(BaseModel):
    subject_id: str
    name: str
    type: Literal["video", "document", "link", "book", "other"] = "other"
    topic_id: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None


class ResourceUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[Literal["video", "document", "link", "book", "other"]] = None
    topic_id: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class LibraryItemCreate(BaseModel):
    title: str
    day_offset: int = Field(0, ge=0)
    task_type: str = "todo"
    settings: Dict[str, Any] = Field(default_factory=dict)
    topic_id: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: int = Field(0, ge=0)


class LibraryAssign(BaseModel):
    student_id: str
    start_date: Optional[date] = None
    item_ids: Optional[List[str]] = None
