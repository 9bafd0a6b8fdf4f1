from coaching.templates import ProgramTemplate, TaskBlueprint, register_template


def _exam(day, title, description, minutes, topic=None, questions=None):
    settings = {'subject': 'Mathematics', 'exam_type': 'TYT'}
    if topic:
        settings['topic'] = topic
    if questions:
        settings['target_questions'] = questions
    return TaskBlueprint(day=day, title=title, description=description, duration_minutes=minutes,
                         task_type='exam', settings=settings)


TYT_MATH_30 = register_template(ProgramTemplate(
    id='tyt-math-30',
    name='TYT Mathematics - 30 Day Intensive',
    description='Covers the core mathematics topics in 30 days',
    module='exam',
    duration_days=30,
    metadata={'difficulty': 'intermediate', 'tags': ['TYT', 'Mathematics']},
    tasks=[
        _exam(1, 'Numbers and Operations', 'Basic operations, GCD and LCM. Solve 30 questions.', 60, 'Numbers', 30),
        _exam(2, 'Numbers Test', 'Topic test: 20 questions, aim for 16+ correct', 40, 'Numbers', 20),
        _exam(3, 'Fractions and Decimals', 'Fraction operations, decimals. Solve 25 questions.', 60, 'Fractions', 25),
        _exam(4, 'Ratio and Proportion', 'Ratio problems. Solve 30 questions.', 60, 'Ratio', 30),
        _exam(5, 'Word Problems', 'Everyday problems. Solve 35 questions.', 75, 'Problems', 35),
        _exam(6, 'Weekly Mock 1', '40-question mock over the first week', 90, questions=40),
        _exam(7, 'Mock Review', 'Rework wrong answers, revisit weak topics', 60),
        _exam(8, 'Linear Equations', 'Solving first-degree equations. Solve 25 questions.', 60, 'Equations', 25),
        _exam(9, 'Quadratic Equations', 'Solving second-degree equations. Solve 20 questions.', 60, 'Equations', 20),
        _exam(10, 'Systems of Equations', 'Two unknowns. Solve 25 questions.', 60, 'Equations', 25),
        _exam(11, 'Equations Test', 'Topic test: 25 questions, aim for 20+ correct', 50, 'Equations', 25),
        _exam(12, 'Inequalities', 'Solving inequalities. Solve 20 questions.', 60, 'Inequalities', 20),
        _exam(13, 'Weekly Mock 2', '40-question mock over two weeks of topics', 90, questions=40),
        _exam(14, 'Mock Review', 'Error analysis and revision', 60),
        _exam(15, 'Basic Geometry', 'Angles and triangles. Solve 25 questions.', 60, 'Geometry', 25),
        _exam(16, 'Quadrilaterals', 'Squares, rectangles, parallelograms. Solve 20 questions.', 60, 'Geometry', 20),
        _exam(17, 'Perimeter and Area', 'Area calculations. Solve 30 questions.', 60, 'Geometry', 30),
        _exam(18, 'Geometry Test', 'Topic test: 20 questions, aim for 15+ correct', 40, 'Geometry', 20),
        _exam(19, 'Analytic Geometry', 'Coordinates and line equations. Solve 25 questions.', 60, 'Analytic Geometry', 25),
        _exam(20, 'Weekly Mock 3', '40-question mock over three weeks of topics', 90, questions=40),
        _exam(21, 'Mock Review', 'Error analysis and revision', 60),
        _exam(22, 'Functions', 'Function concept and graphs. Solve 25 questions.', 60, 'Functions', 25),
        _exam(23, 'Permutations and Combinations', 'Counting. Solve 20 questions.', 60, 'Probability', 20),
        _exam(24, 'Probability', 'Probability calculations. Solve 25 questions.', 60, 'Probability', 25),
        _exam(25, 'Probability Test', 'Topic test: 15 questions, aim for 12+ correct', 30, 'Probability', 15),
        _exam(26, 'Mixed Problems', 'Mixed questions from every topic. Solve 40 questions.', 90, questions=40),
        _exam(27, 'Weekly Mock 4', '40-question mock over all topics', 90, questions=40),
        _exam(28, 'Mock Review', 'Error analysis and revision', 60),
        _exam(29, 'General Revision', 'Revisit weak topics. Solve 50 questions.', 90, questions=50),
        _exam(30, 'Final Mock', 'Last 40-question mock exam', 90, questions=40),
    ],
))

TYT_MATH_5 = register_template(ProgramTemplate(
    id='tyt-math-5',
    name='TYT Mathematics - 5 Day Sprint',
    description='A quick pass over the core mathematics topics in 5 days',
    module='exam',
    duration_days=5,
    metadata={'difficulty': 'beginner', 'tags': ['TYT', 'Mathematics', 'Sprint']},
    tasks=[
        _exam(1, 'Numbers and Fractions', 'Numbers, fractions, decimals. Solve 40 questions.', 90, 'Numbers', 40),
        _exam(2, 'Equations', 'Linear and quadratic equations. Solve 40 questions.', 90, 'Equations', 40),
        _exam(3, 'Geometry', 'Triangles, quadrilaterals, area. Solve 40 questions.', 90, 'Geometry', 40),
        _exam(4, 'Functions and Probability', 'Solve 40 questions.', 90, 'Functions', 40),
        _exam(5, 'Final Mock', '40-question mock and review', 120, questions=40),
    ],
))

_DAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
_MEALS = (
    ('Breakfast', 'breakfast', 30, {'calories': 450, 'protein': 20, 'carbs': 60, 'fats': 15}),
    ('Lunch', 'lunch', 45, {'calories': 600, 'protein': 40, 'carbs': 70, 'fats': 20}),
    ('Dinner', 'dinner', 40, {'calories': 500, 'protein': 25, 'carbs': 65, 'fats': 15}),
)

NUTRITION_WEEKLY = register_template(ProgramTemplate(
    id='nutrition-weekly-balanced',
    name='7 Day Balanced Nutrition',
    description='Balanced meal plan targeting 1850 calories a day',
    module='nutrition',
    duration_days=7,
    metadata={'difficulty': 'beginner', 'tags': ['Balanced']},
    tasks=[
        TaskBlueprint(day=day, title=f"{weekday} {meal}", duration_minutes=minutes, task_type='nutrition',
                      settings={'meal_type': meal_type, **macros})
        for day, weekday in enumerate(_DAYS, start=1)
        for meal, meal_type, minutes, macros in _MEALS
    ],
))

GUITAR_BEGINNER = register_template(ProgramTemplate(
    id='music-guitar-beginner',
    name='Guitar for Beginners - 30 Days',
    description='Basic guitar technique and first pieces',
    module='music',
    duration_days=30,
    metadata={'difficulty': 'beginner', 'tags': ['Guitar']},
    tasks=[
        TaskBlueprint(1, 'Meet the Guitar', 'Parts of the instrument, tuning', 30, 'music',
                      {'instrument': 'guitar', 'technique': 'basics', 'practice_type': 'theory'}),
        TaskBlueprint(2, 'First Chords (E, A, D)', 'Learn the chords and switch between them', 45, 'music',
                      {'instrument': 'guitar', 'technique': 'chords', 'chords': ['E', 'A', 'D']}),
        TaskBlueprint(3, 'Rhythm', 'Simple strumming patterns', 40, 'music',
                      {'instrument': 'guitar', 'technique': 'rhythm'}),
        TaskBlueprint(4, 'Finger Exercises', 'Strength and independence drills', 30, 'music',
                      {'instrument': 'guitar', 'technique': 'technique'}),
        TaskBlueprint(5, 'First Song', 'Practice with a simple song', 60, 'music',
                      {'instrument': 'guitar', 'piece': 'Simple song', 'technique': 'repertoire'}),
    ] + [
        TaskBlueprint(day, f"Day {day} - Practice", 'Regular practice', 45, 'music',
                      {'instrument': 'guitar', 'practice_type': 'daily'})
        for day in range(6, 31)
    ],
))

FRONTEND_BASICS = register_template(ProgramTemplate(
    id='coding-frontend-basics',
    name='Frontend Basics - 14 Days',
    description='HTML, CSS and JavaScript fundamentals',
    module='coding',
    duration_days=14,
    metadata={'difficulty': 'beginner', 'tags': ['Frontend', 'JavaScript']},
    tasks=[
        TaskBlueprint(day, title, description, minutes, 'todo', settings)
        for day, title, description, minutes, settings in (
            (1, 'HTML Basics', 'Core tags and page structure', 60, {'language': 'HTML', 'practice_type': 'theory'}),
            (2, 'HTML Practice', 'Build a simple page', 90, {'language': 'HTML', 'practice_type': 'project'}),
            (3, 'CSS Basics', 'Selectors, colors, fonts', 60, {'language': 'CSS'}),
            (4, 'CSS Layout', 'Flexbox and grid basics', 90, {'language': 'CSS'}),
            (5, 'JavaScript Basics', 'Variables, data types, functions', 60, {'language': 'JavaScript'}),
            (6, 'JavaScript DOM', 'DOM manipulation and events', 90, {'language': 'JavaScript'}),
            (7, 'Weekly Project', 'A to-do list application', 120,
             {'language': 'JavaScript', 'practice_type': 'project', 'project_name': 'Todo App'}),
            (8, 'JavaScript Arrays', 'Array methods and iteration', 60, {'language': 'JavaScript'}),
            (9, 'JavaScript Objects', 'Working with objects', 60, {'language': 'JavaScript'}),
            (10, 'Async JavaScript', 'Callbacks, promises, async/await', 90, {'language': 'JavaScript'}),
            (11, 'Fetch API', 'API calls and JSON handling', 90, {'language': 'JavaScript'}),
            (12, 'Local Storage', 'Persisting data in the browser', 60, {'language': 'JavaScript'}),
            (13, 'Final Project Start', 'Start a weather app', 120,
             {'language': 'JavaScript', 'practice_type': 'project', 'project_name': 'Weather App'}),
            (14, 'Final Project Finish', 'Finish and deploy the weather app', 120,
             {'language': 'JavaScript', 'practice_type': 'project', 'project_name': 'Weather App'}),
        )
    ],
))

HABIT_30 = register_template(ProgramTemplate(
    id='general-habit-30',
    name='Custom Habit - 30 Days',
    description='A 30 day habit program to personalise',
    module='general',
    duration_days=30,
    metadata={'difficulty': 'beginner', 'tags': ['Habit']},
    tasks=[
        TaskBlueprint(day, f"Day {day} - Daily Practice", 'Do your target habit', 30, 'todo', {'custom_goal': True})
        for day in range(1, 31)
    ],
))

WEEKLY_GOALS = register_template(ProgramTemplate(
    id='general-weekly-goals',
    name='Weekly Goals',
    description='Seven days of simple goal tracking',
    module='general',
    duration_days=7,
    metadata={'difficulty': 'beginner', 'tags': ['Goals']},
    tasks=[
        TaskBlueprint(day, f"Day {day} Goal", 'Complete your goal for the day', 20, 'todo')
        for day in range(1, 8)
    ],
))
