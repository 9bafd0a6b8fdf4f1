import uuid

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Boolean, Float, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    roles = Column(JSON, default=lambda: ['student'])  # student, coach, admin
    specialties = Column(JSON, default=list)
    preferences = Column(JSON, default=dict)
    telegram_chat_id = Column(String(64))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', roles={self.roles})>"


class CoachStudent(Base):
    __tablename__ = 'user_relationships'

    id = Column(String(36), primary_key=True, default=new_id)
    coach_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    student_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    role_label = Column(String(100), default='General Coach')
    is_active = Column(Boolean, default=True)
    notes = Column(Text)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<CoachStudent(coach={self.coach_id}, student={self.student_id}, label='{self.role_label}')>"


class Project(Base):
    __tablename__ = 'projects'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), default='active')  # planning, active, on-hold, completed
    priority = Column(String(20), default='medium')  # low, medium, high, critical
    progress_percent = Column(Integer, default=0)
    module = Column(String(20), default='general')
    is_coach_project = Column(Boolean, default=False)
    start_date = Column(Date)
    end_date = Column(Date)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=func.now())

    tasks = relationship("Task", back_populates="project")

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}', status='{self.status}')>"


class Task(Base):
    __tablename__ = 'tasks'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    project_id = Column(String(36), ForeignKey('projects.id'))
    parent_id = Column(String(36), ForeignKey('tasks.id'))
    title = Column(Text, nullable=False)
    description = Column(Text)
    task_type = Column(String(20), default='todo')  # todo, video, exam, nutrition, music, other
    due_date = Column(Date)
    due_time = Column(String(5))  # HH:MM
    duration_minutes = Column(Integer, default=0)
    is_completed = Column(Boolean, default=False)
    completed_at = Column(DateTime)
    sort_order = Column(Integer, default=0)
    settings = Column(JSON, default=dict)
    task_metadata = Column(JSON, default=dict)
    is_private = Column(Boolean, default=False)
    created_by = Column(String(36))
    assigned_by = Column(String(36))
    relationship_id = Column(String(36), ForeignKey('user_relationships.id'))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="tasks")

    def __repr__(self):
        return f"<Task(id={self.id}, title='{self.title[:50]}', order={self.sort_order})>"


class Habit(Base):
    __tablename__ = 'habits'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    frequency = Column(String(20), default='daily')  # daily, weekly, monthly
    target_type = Column(String(20), default='boolean')  # boolean, count, duration
    target_value = Column(Integer)
    color = Column(String(20), default='indigo')
    icon = Column(String(20), default='check')
    current_streak = Column(Integer, default=0)
    longest_streak = Column(Integer, default=0)
    total_completions = Column(Integer, default=0)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    start_date = Column(Date)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<Habit(id={self.id}, name='{self.name}', streak={self.current_streak})>"


class HabitCompletion(Base):
    __tablename__ = 'habit_completions'
    __table_args__ = (
        UniqueConstraint('habit_id', 'completed_date', name='uniq_habit_completion'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    habit_id = Column(String(36), ForeignKey('habits.id'), nullable=False)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    completed_date = Column(Date, nullable=False)
    count = Column(Integer, default=1)
    duration = Column(Integer)
    notes = Column(Text)
    completed_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<HabitCompletion(habit_id={self.habit_id}, date={self.completed_date})>"


class ExamTemplate(Base):
    __tablename__ = 'exam_templates'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    sections = Column(JSON, default=list)  # [{key, name, question_count}]
    created_at = Column(DateTime, default=func.now())


class Exam(Base):
    __tablename__ = 'exams'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    date = Column(Date)
    template_id = Column(String(36), ForeignKey('exam_templates.id'), nullable=False)
    created_at = Column(DateTime, default=func.now())


class ExamResult(Base):
    __tablename__ = 'exam_results'
    __table_args__ = (
        UniqueConstraint('user_id', 'exam_id', name='uniq_exam_result'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    exam_id = Column(String(36), ForeignKey('exams.id'), nullable=False)
    details = Column(JSON, default=dict)
    total_net = Column(Float, default=0.0)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<ExamResult(user_id={self.user_id}, exam_id={self.exam_id}, net={self.total_net})>"


class ProgramTemplate(Base):
    __tablename__ = 'program_templates'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    module = Column(String(20), default='general')  # exam, nutrition, music, coding, general
    duration_days = Column(Integer, default=7)
    tasks = Column(JSON, default=list)
    created_by = Column(String(36))
    created_at = Column(DateTime, default=func.now())


class Subject(Base):
    __tablename__ = 'subjects'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(50))
    color = Column(String(20))
    icon = Column(String(30))
    is_active = Column(Boolean, default=True)
    is_system = Column(Boolean, default=False)
    created_by = Column(String(36))
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<Subject(id={self.id}, name='{self.name}')>"


class Topic(Base):
    __tablename__ = 'topics'

    id = Column(String(36), primary_key=True, default=new_id)
    subject_id = Column(String(36), ForeignKey('subjects.id'), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    is_system = Column(Boolean, default=False)
    created_by = Column(String(36))
    created_at = Column(DateTime, default=func.now())


class Resource(Base):
    __tablename__ = 'resources'

    id = Column(String(36), primary_key=True, default=new_id)
    subject_id = Column(String(36), ForeignKey('subjects.id'), nullable=False)
    topic_id = Column(String(36), ForeignKey('topics.id'))
    name = Column(String(255), nullable=False)
    type = Column(String(20), default='other')  # video, document, link, book, other
    url = Column(Text)
    description = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class LibraryItem(Base):
    __tablename__ = 'library_items'

    id = Column(String(36), primary_key=True, default=new_id)
    subject_id = Column(String(36), ForeignKey('subjects.id'), nullable=False)
    topic_id = Column(String(36), ForeignKey('topics.id'))
    title = Column(Text, nullable=False)
    description = Column(Text)
    task_type = Column(String(20), default='todo')
    settings = Column(JSON, default=dict)
    duration_minutes = Column(Integer, default=0)
    day_offset = Column(Integer, default=0)  # 0 is the assignment day
    created_by = Column(String(36))
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<LibraryItem(id={self.id}, title='{self.title[:50]}', day={self.day_offset})>"


# Row-store table registry
TABLES = {
    model.__tablename__: model
    for model in (User, CoachStudent, Project, Task, Habit, HabitCompletion,
                  ExamTemplate, Exam, ExamResult, ProgramTemplate, Subject, Topic, Resource, LibraryItem)
}
