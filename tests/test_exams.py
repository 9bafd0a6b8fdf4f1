from datetime import date

import pytest

from coaching.errors import ValidationError
from coaching.exams import ExamService, Section, parse_sections, score_exam, score_section

TYT_SECTIONS = [
    {'key': 'turkish', 'name': 'Turkish', 'question_count': 40},
    {'key': 'math', 'name': 'Mathematics', 'question_count': 40},
]


def test_score_section():
    score = score_section(Section('turkish', 'Turkish', 40), correct=30, incorrect=4)
    assert score.empty == 6
    assert score.net == 29.0


def test_net_is_rounded_to_two_decimals():
    assert score_section(Section('s', 'Science', 20), 10, 3).net == 9.25
    assert score_section(Section('s', 'Science', 20), 0, 1).net == -0.25


def test_too_many_answers_are_rejected():
    with pytest.raises(ValidationError):
        score_section(Section('math', 'Mathematics', 40), correct=45, incorrect=0)
    with pytest.raises(ValidationError):
        score_section(Section('math', 'Mathematics', 40), correct=30, incorrect=11)


def test_score_exam_treats_missing_sections_as_blank():
    result = score_exam(parse_sections(TYT_SECTIONS), {'turkish': {'correct': 30, 'incorrect': 4}})
    assert result['total_net'] == 29.0
    assert result['details']['math'] == {'correct': 0, 'incorrect': 0, 'empty': 40, 'net': 0.0}


def test_unknown_sections_are_rejected():
    with pytest.raises(ValidationError):
        score_exam(parse_sections(TYT_SECTIONS), {'history': {'correct': 1}})


@pytest.mark.parametrize('raw', [
    [],
    [{'key': 'a', 'name': 'A'}],
    [{'key': 'a', 'name': 'A', 'question_count': 0}],
    [{'key': 'a', 'name': 'A', 'question_count': 5}, {'key': 'a', 'name': 'Again', 'question_count': 5}],
])
def test_parse_sections_rejects_bad_templates(raw):
    with pytest.raises(ValidationError):
        parse_sections(raw)


def test_results_are_saved_once_per_exam(store, student):
    exams = ExamService(store)
    template = exams.create_template('TYT', TYT_SECTIONS)
    first = exams.create_exam('Mock 1', template['id'], date(2024, 2, 1))
    second = exams.create_exam('Mock 2', template['id'], date(2024, 3, 1))

    exams.save_result(student['id'], first['id'], {'turkish': {'correct': 30, 'incorrect': 4}})
    exams.save_result(student['id'], first['id'], {'turkish': {'correct': 32, 'incorrect': 4}})
    exams.save_result(student['id'], second['id'], {'math': {'correct': 20, 'incorrect': 8}})

    assert len(store.select('exam_results', {'user_id': student['id']})) == 2
    results = exams.student_results(student['id'])
    assert [r['exam']['name'] for r in results] == ['Mock 2', 'Mock 1']
    assert results[1]['total_net'] == 31.0
    assert [p['total_net'] for p in exams.net_trend(student['id'])] == [31.0, 18.0]
    assert exams.result_summary(results[0]) == "Total net 18.0 (turkish: 0.0, math: 18.0)"


def test_invalid_result_is_not_saved(store, student):
    exams = ExamService(store)
    template = exams.create_template('TYT', TYT_SECTIONS)
    exam = exams.create_exam('Mock', template['id'])
    with pytest.raises(ValidationError):
        exams.save_result(student['id'], exam['id'], {'math': {'correct': 45, 'incorrect': 0}})
    assert store.select('exam_results') == []


def test_exam_listing_includes_template(store):
    exams = ExamService(store)
    template = exams.create_template('LGS', [{'key': 'science', 'name': 'Science', 'question_count': 20}])
    exams.create_exam('Spring mock', template['id'], date(2024, 4, 1))
    listed = exams.exams()
    assert listed[0]['template']['name'] == 'LGS'
    assert exams.result_summary(None) == "No result"
