from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from coaching.errors import ValidationError


class TaskType(str, Enum):
    TODO = 'todo'
    VIDEO = 'video'
    EXAM = 'exam'
    NUTRITION = 'nutrition'
    MUSIC = 'music'
    OTHER = 'other'


class TaskSettings(BaseModel):
    # Coaches attach ad-hoc keys, keep them
    model_config = ConfigDict(extra='allow')


class TodoSettings(TaskSettings):
    pass


class VideoSettings(TaskSettings):
    video_url: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)


class ExamSettings(TaskSettings):
    subject: Optional[str] = None
    topic: Optional[str] = None
    target_questions: Optional[int] = Field(None, ge=0)
    exam_type: Optional[str] = None  # TYT, AYT, LGS...


class NutritionSettings(TaskSettings):
    meal_type: Optional[Literal['breakfast', 'lunch', 'dinner', 'snack']] = None
    calories: Optional[int] = Field(None, ge=0)
    protein: Optional[float] = Field(None, ge=0)
    carbs: Optional[float] = Field(None, ge=0)
    fats: Optional[float] = Field(None, ge=0)


class MusicSettings(TaskSettings):
    instrument: Optional[str] = None
    technique: Optional[str] = None
    piece: Optional[str] = None
    practice_type: Optional[str] = None  # theory, daily, repertoire...
    chords: List[str] = Field(default_factory=list)


class OtherSettings(TaskSettings):
    pass


SETTINGS_MODELS: Dict[TaskType, Type[TaskSettings]] = {
    TaskType.TODO: TodoSettings,
    TaskType.VIDEO: VideoSettings,
    TaskType.EXAM: ExamSettings,
    TaskType.NUTRITION: NutritionSettings,
    TaskType.MUSIC: MusicSettings,
    TaskType.OTHER: OtherSettings,
}


def parse_task_type(value: Any) -> TaskType:
    try:
        return TaskType(value or TaskType.TODO)
    except ValueError:
        raise ValidationError(f"Unknown task type: {value}")


def validate_settings(task_type: Any, settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Check `settings` against the model for `task_type`; returns the cleaned dict"""
    model = SETTINGS_MODELS[parse_task_type(task_type)]
    try:
        return model.model_validate(settings or {}).model_dump(exclude_unset=True)
    except PydanticValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ValidationError(f"Invalid {model.__name__}: {problems}")
