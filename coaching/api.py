import logging
from datetime import date, timedelta
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, Depends, Header, HTTPException, UploadFile, File, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coaching import schemas
from coaching.drag import MovePlan, RowUpdate
from coaching.errors import NotFoundError, PermissionDenied, ValidationError
from coaching.exams import ExamService
from coaching.habits import HabitTracker
from coaching.library import LibraryService, specialty_templates
from coaching.openai import AIEngine, collect_student_context, get_ai, suggestions_to_tasks
from coaching.ordering import NotSiblingError
from coaching.task_manager import TaskManager, local_now
from coaching.templates import ProgramTemplate, TemplateService
from coaching.users import UserService
from database.row_store import FileStore, RowStore, StoreError

logger = logging.getLogger()

app = FastAPI(
    title="Coaching Planner API",
    description="Tasks, projects, habits and exam tracking for students and their coaches",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors

@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PermissionDenied)
async def permission_error_handler(request, exc: PermissionDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(NotSiblingError)
async def not_sibling_handler(request, exc: NotSiblingError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request, exc: StoreError):
    logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# Dependencies

def get_store():
    store = RowStore()
    try:
        yield store
    finally:
        store.close()


def get_files() -> FileStore:
    return FileStore()


def get_ai_engine() -> AIEngine:
    try:
        return get_ai()
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))


def current_user(x_user_id: str = Header(...), store: RowStore = Depends(get_store)) -> Dict[str, Any]:
    user = store.get('users', x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def _manage(store: RowStore, user: Dict[str, Any], student_id: str):
    UserService(store).require_manage(user['id'], student_id)


@app.get("/")
async def root():
    return {"name": "Coaching Planner API", "version": "1.0.0", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "ok", "time": local_now().isoformat()}


# Users

@app.post("/users", status_code=201)
def create_user(body: schemas.UserCreate, store: RowStore = Depends(get_store)):
    return UserService(store).create_user(**body.model_dump())


@app.get("/users/me")
def me(user=Depends(current_user)):
    return user


@app.get("/users")
def list_users(role: Optional[str] = None, user=Depends(current_user), store: RowStore = Depends(get_store)):
    users = UserService(store)
    if role != 'coach':
        users.require_role(user['id'], 'admin')
    return users.list_users(role)


@app.patch("/users/{user_id}")
def update_user(user_id: str, body: schemas.UserUpdate, user=Depends(current_user),
                store: RowStore = Depends(get_store)):
    users = UserService(store)
    patch = body.model_dump(exclude_unset=True)
    if user_id != user['id'] or 'roles' in patch:
        users.require_role(user['id'], 'admin')
    return users.update_user(user_id, patch)


@app.delete("/users/{user_id}")
def delete_user(user_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    users = UserService(store)
    users.require_role(user['id'], 'admin')
    users.delete_user(user_id)
    return {"deleted": user_id}


@app.post("/coach-links", status_code=201)
def assign_coach(body: schemas.CoachAssign, user=Depends(current_user), store: RowStore = Depends(get_store)):
    users = UserService(store)
    if body.coach_id != user['id']:
        users.require_role(user['id'], 'admin')
    return users.assign_coach(body.student_id, body.coach_id, body.role_label)


@app.delete("/coach-links/{relationship_id}")
def remove_coach(relationship_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    link = store.get('user_relationships', relationship_id)
    if not link:
        raise NotFoundError(f"Relationship {relationship_id} not found")
    users = UserService(store)
    if user['id'] not in (link['coach_id'], link['student_id']):
        users.require_role(user['id'], 'admin')
    users.remove_coach(relationship_id)
    return {"deleted": relationship_id}


@app.get("/users/{user_id}/students")
def students_of(user_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    users = UserService(store)
    if user_id != user['id']:
        users.require_role(user['id'], 'admin')
    return users.students_of(user_id)


@app.get("/users/{user_id}/coaches")
def coaches_of(user_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _manage(store, user, user_id)
    return UserService(store).coaches_of(user_id)


# Tasks

@app.get("/tasks/day")
def day_tree(day: Optional[date] = None, user_id: Optional[str] = None, user=Depends(current_user),
             store: RowStore = Depends(get_store)):
    user_id = user_id or user['id']
    _manage(store, user, user_id)
    day = day or local_now().date()
    return {"date": day, "tasks": [node.to_dict() for node in TaskManager(store).day_tree(user_id, day)]}


@app.get("/tasks/range")
def range_rows(start: date, end: date, user_id: Optional[str] = None, user=Depends(current_user),
               store: RowStore = Depends(get_store)):
    """Flat standalone tasks between two days, for the week and month views"""
    user_id = user_id or user['id']
    _manage(store, user, user_id)
    if end < start:
        raise ValidationError("end must not be before start")
    board = TaskManager(store).range_board(user_id, start, end)
    return sorted(board.rows.values(), key=lambda t: (t['due_date'] or date.min, t.get('sort_order') or 0))


@app.post("/tasks", status_code=201)
def create_task(body: schemas.TaskCreate, user=Depends(current_user), store: RowStore = Depends(get_store)):
    data = body.model_dump(exclude_unset=True)
    data.pop('title')
    user_id = data.pop('user_id', None) or user['id']
    _manage(store, user, user_id)
    if user_id != user['id']:
        data['assigned_by'] = user['id']
    return TaskManager(store).create_task(user_id, body.title, created_by=user['id'], **data)


def _task_for(store: RowStore, user: Dict[str, Any], task_id: str) -> Dict[str, Any]:
    task = TaskManager(store).get_task(task_id)
    _manage(store, user, task['user_id'])
    return task


@app.get("/tasks/{task_id}")
def get_task(task_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    return _task_for(store, user, task_id)


@app.patch("/tasks/{task_id}")
def update_task(task_id: str, body: schemas.TaskUpdate, user=Depends(current_user),
                store: RowStore = Depends(get_store)):
    _task_for(store, user, task_id)
    return TaskManager(store).update_task(task_id, body.model_dump(exclude_unset=True))


@app.post("/tasks/{task_id}/complete")
def complete_task(task_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _task_for(store, user, task_id)
    return TaskManager(store).set_completed(task_id, True)


@app.post("/tasks/{task_id}/uncomplete")
def uncomplete_task(task_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _task_for(store, user, task_id)
    return TaskManager(store).set_completed(task_id, False)


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _task_for(store, user, task_id)
    return {"deleted": TaskManager(store).delete_task(task_id)}


@app.post("/tasks/{task_id}/move")
def move_task(task_id: str, body: schemas.TaskMove, user=Depends(current_user),
              store: RowStore = Depends(get_store)):
    _task_for(store, user, task_id)
    plan = TaskManager(store).move_task(task_id, body.parent_id, body.index, body.due_date)
    return {"updates": plan.as_dict()}


@app.post("/tasks/reorder")
def reorder_task(body: schemas.TaskReorder, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _task_for(store, user, body.source_id)
    plan = TaskManager(store).reorder_task(body.source_id, body.target_id, body.edge)
    return {"updates": plan.as_dict()}


@app.post("/tasks/plan")
def apply_plan(body: schemas.PlanApply, user=Depends(current_user), store: RowStore = Depends(get_store)):
    """Persist the row updates a client-side drag produced"""
    for update in body.updates:
        _task_for(store, user, update.id)
    plan = MovePlan([RowUpdate(u.id, u.patch) for u in body.updates])
    return {"written": TaskManager(store).apply_client_plan(plan)}


@app.post("/tasks/{task_id}/attachments", status_code=201)
async def attach_file(task_id: str, file: UploadFile = File(...), user=Depends(current_user),
                      store: RowStore = Depends(get_store), files: FileStore = Depends(get_files)):
    _task_for(store, user, task_id)
    blob = await file.read()
    return TaskManager(store, files=files).attach_file(task_id, file.filename, blob)


# Projects

@app.get("/projects")
def list_projects(user_id: Optional[str] = None, user=Depends(current_user), store: RowStore = Depends(get_store)):
    user_id = user_id or user['id']
    _manage(store, user, user_id)
    return TaskManager(store).list_projects(user_id)


@app.post("/projects", status_code=201)
def create_project(body: schemas.ProjectCreate, user=Depends(current_user), store: RowStore = Depends(get_store)):
    data = body.model_dump()
    return TaskManager(store).create_project(user['id'], data.pop('name'), **data)


def _project_for(store: RowStore, user: Dict[str, Any], project_id: str) -> Dict[str, Any]:
    project = TaskManager(store).get_project(project_id)
    _manage(store, user, project['user_id'])
    return project


@app.get("/projects/{project_id}")
def get_project(project_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _project_for(store, user, project_id)
    manager = TaskManager(store)
    progress = manager.project_progress(project_id)
    return {
        **manager.get_project(project_id),
        "progress_percent": progress,
        "tasks": [node.to_dict() for node in manager.project_tree(project_id)],
    }


@app.patch("/projects/{project_id}")
def update_project(project_id: str, body: schemas.ProjectUpdate, user=Depends(current_user),
                   store: RowStore = Depends(get_store)):
    _project_for(store, user, project_id)
    return TaskManager(store).update_project(project_id, body.model_dump(exclude_unset=True))


@app.delete("/projects/{project_id}")
def delete_project(project_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _project_for(store, user, project_id)
    return {"deleted_tasks": TaskManager(store).delete_project(project_id)}


@app.post("/projects/{project_id}/template", status_code=201)
def project_to_template(project_id: str, body: schemas.ProjectToTemplate, user=Depends(current_user),
                        store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    _project_for(store, user, project_id)
    return TemplateService(store).convert_project_to_template(project_id, body.name, created_by=user['id'])


# Habits

@app.get("/habits")
def list_habits(user_id: Optional[str] = None, user=Depends(current_user), store: RowStore = Depends(get_store)):
    user_id = user_id or user['id']
    _manage(store, user, user_id)
    return HabitTracker(store).habits(user_id)


@app.get("/habits/week")
def habit_week(week_start: Optional[date] = None, user_id: Optional[str] = None, user=Depends(current_user),
               store: RowStore = Depends(get_store)):
    user_id = user_id or user['id']
    _manage(store, user, user_id)
    return HabitTracker(store).week_grid(user_id, week_start or local_now().date())


@app.post("/habits", status_code=201)
def create_habit(body: schemas.HabitCreate, user=Depends(current_user), store: RowStore = Depends(get_store)):
    data = body.model_dump(exclude_none=True)
    return HabitTracker(store).create_habit(user['id'], data.pop('name'), **data)


def _habit_for(tracker: HabitTracker, store: RowStore, user: Dict[str, Any], habit_id: str) -> Dict[str, Any]:
    habit = tracker.get_habit(habit_id)
    _manage(store, user, habit['user_id'])
    return habit


@app.patch("/habits/{habit_id}")
def update_habit(habit_id: str, body: schemas.HabitUpdate, user=Depends(current_user),
                 store: RowStore = Depends(get_store)):
    tracker = HabitTracker(store)
    _habit_for(tracker, store, user, habit_id)
    return tracker.update_habit(habit_id, body.model_dump(exclude_unset=True))


@app.delete("/habits/{habit_id}")
def delete_habit(habit_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    tracker = HabitTracker(store)
    _habit_for(tracker, store, user, habit_id)
    tracker.delete_habit(habit_id)
    return {"deleted": habit_id}


@app.post("/habits/{habit_id}/toggle")
def toggle_habit(habit_id: str, body: schemas.HabitToggle, user=Depends(current_user),
                 store: RowStore = Depends(get_store)):
    tracker = HabitTracker(store)
    _habit_for(tracker, store, user, habit_id)
    day = body.day or local_now().date()
    details = {"count": body.count, "duration": body.duration, "notes": body.notes}
    if body.completed is None:
        done = tracker.toggle(habit_id, day, **details)
    else:
        done = tracker.set_completed(habit_id, day, completed=body.completed, **details)
    return {"completed": done, "habit": tracker.get_habit(habit_id)}


@app.post("/habits/reorder")
def reorder_habits(body: schemas.TaskReorder, user=Depends(current_user), store: RowStore = Depends(get_store)):
    tracker = HabitTracker(store)
    habit = _habit_for(tracker, store, user, body.source_id)
    return {"changed": tracker.reorder(habit["user_id"], body.source_id, body.target_id, body.edge)}


# Exams

@app.get("/exam-templates")
def exam_templates(user=Depends(current_user), store: RowStore = Depends(get_store)):
    return ExamService(store).templates()


@app.post("/exam-templates", status_code=201)
def create_exam_template(body: schemas.ExamTemplateCreate, user=Depends(current_user),
                         store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    return ExamService(store).create_template(body.name, [s.model_dump() for s in body.sections])


@app.get("/exams")
def list_exams(user=Depends(current_user), store: RowStore = Depends(get_store)):
    return ExamService(store).exams()


@app.post("/exams", status_code=201)
def create_exam(body: schemas.ExamCreate, user=Depends(current_user), store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    return ExamService(store).create_exam(body.name, body.template_id, body.date)


@app.post("/exams/{exam_id}/results")
def save_exam_result(exam_id: str, body: schemas.ExamResultIn, user=Depends(current_user),
                     store: RowStore = Depends(get_store)):
    _manage(store, user, body.user_id)
    answers = {key: value.model_dump() for key, value in body.answers.items()}
    return ExamService(store).save_result(body.user_id, exam_id, answers)


@app.get("/students/{student_id}/exam-results")
def exam_results(student_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _manage(store, user, student_id)
    exams = ExamService(store)
    return {"results": exams.student_results(student_id), "trend": exams.net_trend(student_id)}


# Program templates

@app.get("/templates")
def list_templates(module: Optional[str] = None, user=Depends(current_user), store: RowStore = Depends(get_store)):
    return [
        {
            "id": t.id,
            "name": t.name,
            "description": t.description,
            "module": t.module,
            "duration_days": t.duration_days,
            "task_count": len(t.tasks),
        }
        for t in TemplateService(store).list_templates(module)
    ]


@app.post("/templates/apply", status_code=201)
def apply_template(body: schemas.TemplateApply, user=Depends(current_user), store: RowStore = Depends(get_store)):
    _manage(store, user, body.student_id)
    return TemplateService(store).apply_template(body.template_id, body.student_id, body.start_date,
                                                 coach_id=user['id'])


# Subjects, topics, resources and the task library

def _catalogue_editor(store: RowStore, user: Dict[str, Any], row: Dict[str, Any]):
    """Admins edit everything, coaches only what they created"""
    users = UserService(store)
    users.require_role(user['id'], 'coach', 'admin')
    if row.get('created_by') != user['id'] and not users.has_role(user['id'], 'admin'):
        raise PermissionDenied("Only the creator or an admin can change this")


@app.get("/subjects")
def list_subjects(include_inactive: bool = False, user=Depends(current_user), store: RowStore = Depends(get_store)):
    return LibraryService(store).subjects(include_inactive)


@app.post("/subjects", status_code=201)
def create_subject(body: schemas.SubjectCreate, user=Depends(current_user), store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    data = body.model_dump(exclude_none=True)
    return LibraryService(store).create_subject(data.pop('name'), created_by=user['id'], **data)


@app.patch("/subjects/{subject_id}")
def update_subject(subject_id: str, body: schemas.SubjectUpdate, user=Depends(current_user),
                   store: RowStore = Depends(get_store)):
    library = LibraryService(store)
    _catalogue_editor(store, user, library.get_subject(subject_id))
    return library.update_subject(subject_id, body.model_dump(exclude_unset=True))


@app.delete("/subjects/{subject_id}")
def delete_subject(subject_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    library = LibraryService(store)
    _catalogue_editor(store, user, library.get_subject(subject_id))
    return {"deleted": subject_id, "removed": library.delete_subject(subject_id)}


@app.get("/specialties")
def list_specialties(user=Depends(current_user)):
    return specialty_templates()


@app.post("/specialties/{slug}/seed", status_code=201)
def seed_specialty(slug: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    return LibraryService(store).seed_specialty(slug, created_by=user['id'])


@app.post("/subjects/{subject_id}/topics", status_code=201)
def create_topic(subject_id: str, body: schemas.TopicCreate, user=Depends(current_user),
                 store: RowStore = Depends(get_store)):
    library = LibraryService(store)
    _catalogue_editor(store, user, library.get_subject(subject_id))
    return library.create_topic(subject_id, body.name, body.description, created_by=user['id'])


@app.patch("/topics/{topic_id}")
def update_topic(topic_id: str, body: schemas.TopicUpdate, user=Depends(current_user),
                 store: RowStore = Depends(get_store)):
    library = LibraryService(store)
    _catalogue_editor(store, user, library.get_topic(topic_id))
    return library.update_topic(topic_id, body.model_dump(exclude_unset=True))


@app.delete("/topics/{topic_id}")
def delete_topic(topic_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    library = LibraryService(store)
    _catalogue_editor(store, user, library.get_topic(topic_id))
    library.delete_topic(topic_id)
    return {"deleted": topic_id}


@app.get("/resources")
def list_resources(subject_id: Optional[str] = None, include_inactive: bool = False, user=Depends(current_user),
                   store: RowStore = Depends(get_store)):
    return LibraryService(store).resources(subject_id, include_inactive)


@app.post("/resources", status_code=201)
def create_resource(body: schemas.ResourceCreate, user=Depends(current_user), store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'admin')
    data = body.model_dump(exclude_none=True)
    return LibraryService(store).create_resource(data.pop('subject_id'), data.pop('name'), **data)


@app.patch("/resources/{resource_id}")
def update_resource(resource_id: str, body: schemas.ResourceUpdate, user=Depends(current_user),
                    store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'admin')
    return LibraryService(store).update_resource(resource_id, body.model_dump(exclude_unset=True))


@app.delete("/resources/{resource_id}")
def delete_resource(resource_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'admin')
    LibraryService(store).delete_resource(resource_id)
    return {"deleted": resource_id}


@app.get("/subjects/{subject_id}/library")
def library_items(subject_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    library = LibraryService(store)
    library.get_subject(subject_id)
    return library.library_items(subject_id)


@app.post("/subjects/{subject_id}/library", status_code=201)
def create_library_item(subject_id: str, body: schemas.LibraryItemCreate, user=Depends(current_user),
                        store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    return LibraryService(store).create_library_item(subject_id, created_by=user['id'], **body.model_dump())


@app.delete("/library/{item_id}")
def delete_library_item(item_id: str, user=Depends(current_user), store: RowStore = Depends(get_store)):
    item = store.get('library_items', item_id)
    if not item:
        raise NotFoundError(f"Library item {item_id} not found")
    _catalogue_editor(store, user, item)
    LibraryService(store).delete_library_item(item_id)
    return {"deleted": item_id}


@app.post("/subjects/{subject_id}/library/assign", status_code=201)
def assign_library(subject_id: str, body: schemas.LibraryAssign, user=Depends(current_user),
                   store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    _manage(store, user, body.student_id)
    return LibraryService(store).assign(subject_id, body.student_id, body.start_date,
                                        coach_id=user['id'], item_ids=body.item_ids)


# Coach tools

@app.get("/students/{student_id}/stats")
def completion_stats(student_id: str, start: Optional[date] = None, end: Optional[date] = None,
                     user=Depends(current_user), store: RowStore = Depends(get_store)):
    _manage(store, user, student_id)
    end = end or local_now().date()
    start = start or end - timedelta(days=6)
    if end < start:
        raise ValidationError("end must not be before start")
    return TaskManager(store).completion_stats(student_id, start, end)


@app.post("/students/{student_id}/analysis")
def analyze_student(student_id: str, body: schemas.AnalysisRequest, user=Depends(current_user),
                    store: RowStore = Depends(get_store), ai: AIEngine = Depends(get_ai_engine)):
    UserService(store).require_role(user['id'], 'coach', 'admin')
    _manage(store, user, student_id)
    context = collect_student_context(student_id, store)
    analysis, cost = ai.analyze_student_with_cost(context, body.coach_notes)
    return {**analysis, "cost": cost}


@app.post("/students/{student_id}/suggestions", status_code=201)
def accept_suggestions(student_id: str, body: schemas.SuggestionsAccept, user=Depends(current_user),
                       store: RowStore = Depends(get_store)):
    _manage(store, user, student_id)
    suggestions = [s.model_dump() for s in body.suggestions]
    return suggestions_to_tasks(TaskManager(store), student_id, suggestions,
                                body.due_date or local_now().date(), coach_id=user['id'])


@app.post("/jobs/rollover")
def run_rollover(day: Optional[date] = Query(None), user=Depends(current_user),
                 store: RowStore = Depends(get_store)):
    UserService(store).require_role(user['id'], 'admin')
    return TaskManager(store).rollover(day or local_now().date())
