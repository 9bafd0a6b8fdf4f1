import pytest

from coaching.errors import NotFoundError, PermissionDenied, ValidationError
from coaching.users import UserService


@pytest.fixture
def users(store):
    return UserService(store)


def test_create_user_normalises_email(users):
    user = users.create_user(' Lin@Example.COM ', 'Lin', ['student', 'coach', 'student'])
    assert user['email'] == 'lin@example.com'
    assert user['roles'] == ['student', 'coach']


@pytest.mark.parametrize('email,name,roles', [
    ('not-an-email', 'X', ['student']),
    ('x@example.com', ' ', ['student']),
    ('x@example.com', 'X', ['janitor']),
])
def test_invalid_users(users, email, name, roles):
    with pytest.raises(ValidationError):
        users.create_user(email, name, roles)


def test_duplicate_email(users, student):
    with pytest.raises(ValidationError):
        users.create_user('ADA@example.com', 'Another Ada')


def test_list_and_filter_by_role(users, student, coach, admin):
    assert [u['name'] for u in users.list_users()] == ['Ada', 'Grace', 'Root']
    assert [u['id'] for u in users.coaches()] == [coach['id']]


def test_a_student_can_have_several_coaches(users, store, student, coach):
    second = users.create_user('mentor@example.com', 'Mentor', ['coach'])
    math = users.assign_coach(student['id'], coach['id'], 'Math Coach')
    users.assign_coach(student['id'], second['id'])
    again = users.assign_coach(student['id'], coach['id'], 'Math Coach')
    assert again['id'] == math['id']

    labels = sorted(link['role_label'] for link in users.coaches_of(student['id']))
    assert labels == ['General Coach', 'Math Coach']
    students = users.students_of(coach['id'])
    assert [(s['id'], s['role']) for s in students] == [(student['id'], 'Math Coach')]


def test_only_coaches_can_be_assigned(users, student, admin):
    other = users.create_user('pal@example.com', 'Pal')
    with pytest.raises(ValidationError):
        users.assign_coach(student['id'], other['id'])
    with pytest.raises(NotFoundError):
        users.assign_coach(student['id'], 'ghost')


def test_permissions(users, student, coach, admin):
    stranger = users.create_user('stranger@example.com', 'Stranger', ['coach'])
    users.assign_coach(student['id'], coach['id'])

    assert users.can_manage(student['id'], student['id'])
    assert users.can_manage(coach['id'], student['id'])
    assert users.can_manage(admin['id'], student['id'])
    assert not users.can_manage(stranger['id'], student['id'])
    with pytest.raises(PermissionDenied):
        users.require_manage(stranger['id'], student['id'])
    with pytest.raises(PermissionDenied):
        users.require_role(student['id'], 'coach', 'admin')
    assert users.require_role(admin['id'], 'coach', 'admin')['id'] == admin['id']


def test_removing_a_link_revokes_access(users, student, coach):
    link = users.assign_coach(student['id'], coach['id'])
    users.remove_coach(link['id'])
    assert not users.can_manage(coach['id'], student['id'])
    with pytest.raises(NotFoundError):
        users.remove_coach(link['id'])


def test_delete_user_removes_links(users, store, student, coach):
    users.assign_coach(student['id'], coach['id'])
    users.delete_user(coach['id'])
    assert store.select('user_relationships') == []
    assert store.get('users', coach['id']) is None


def test_update_user(users, student):
    updated = users.update_user(student['id'], {'name': 'Ada L.', 'specialties': ['math']})
    assert updated['name'] == 'Ada L.'
    with pytest.raises(ValidationError):
        users.update_user(student['id'], {'roles': []})


def test_telegram_linking(users, student):
    assert users.link_telegram('nobody@example.com', 42) is None
    linked = users.link_telegram('ADA@example.com', 42)
    assert linked['telegram_chat_id'] == '42'
    assert users.by_telegram_chat(42)['id'] == student['id']
    assert users.by_telegram_chat(7) is None
