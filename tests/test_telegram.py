from datetime import datetime, timedelta

import pytest

from coaching.task_manager import local_now
from coaching.telegram import HELP_TEXT, TelegramBot

CHAT = 4242


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload or {"ok": True, "result": []}
        self.status_code = status_code

    def json(self):
        return self.payload


@pytest.fixture
def sent(monkeypatch):
    messages = []

    def fake_post(url, data=None, timeout=None):
        messages.append((data["chat_id"], data["text"]))
        return FakeResponse()

    monkeypatch.setattr("coaching.telegram.requests.post", fake_post)
    return messages


@pytest.fixture
def bot(store, cache, sent):
    return TelegramBot(token="test-token", store=store, cache=cache)


def say(bot, text, chat_id=CHAT):
    bot.handle_message({"chat": {"id": chat_id}, "text": text})


@pytest.fixture
def linked(bot, student, sent):
    say(bot, "/link ada@example.com")
    sent.clear()
    return student


def test_requires_token(store, cache, monkeypatch):
    monkeypatch.setattr("coaching.telegram.TELEGRAM_BOT_TOKEN", None)
    with pytest.raises(ValueError):
        TelegramBot(store=store, cache=cache)


def test_start_shows_help(bot, sent):
    say(bot, "/start")
    assert sent == [(CHAT, HELP_TEXT)]


def test_unlinked_chat_is_asked_to_link(bot, sent):
    say(bot, "/today")
    assert "not linked" in sent[-1][1]


def test_link(bot, student, sent):
    say(bot, "/link nobody@example.com")
    say(bot, "/link ADA@example.com")
    assert sent[0][1] == "No account found for nobody@example.com"
    assert sent[1][1].startswith("Linked to Ada")


def test_today_lists_labelled_tasks_and_done_completes(bot, linked, sent):
    today = local_now().date()
    parent = bot.task_manager.create_task(linked['id'], "Algebra", due_date=today)
    bot.task_manager.create_task(linked['id'], "Worksheet", parent_id=parent['id'])

    say(bot, "/today")
    text = sent[-1][1]
    assert "1. ☐ Algebra" in text
    assert "1.1. ☐ Worksheet" in text

    say(bot, "/done 1.1")
    assert sent[-1][1] == "✅ Worksheet"
    child = bot.store.select('tasks', {'parent_id': parent['id']})[0]
    assert child['is_completed']

    say(bot, "/undo 1.1")
    assert sent[-1][1] == "↩️ Worksheet"

    say(bot, "/done 7")
    assert "No task labelled '7'" in sent[-1][1]


def test_add_with_time(bot, linked, sent):
    say(bot, "/add Read chapter 4 18:30")
    assert sent[-1][1] == "📝 Added: Read chapter 4 at 18:30"
    task = bot.store.select('tasks', {'user_id': linked['id']})[0]
    assert task['title'] == "Read chapter 4"
    assert task['due_time'] == "18:30"
    assert task['due_date'] == local_now().date()
    assert task['is_private']

    say(bot, "/add")
    assert sent[-1][1].startswith("Usage: /add")


def test_habits_and_habit_toggle(bot, linked, sent):
    bot.habits.create_habit(linked['id'], "Read")
    say(bot, "/habit 1")
    assert sent[-1][1] == "🔥 Read"
    say(bot, "/habits")
    assert "1. Read" in sent[-1][1]
    say(bot, "/habit 1")
    assert sent[-1][1] == "○ Read"
    say(bot, "/habit 9")
    assert sent[-1][1] == "Usage: /habit <1-1>"


def test_unknown_command_and_plain_text(bot, linked, sent):
    say(bot, "/dance")
    assert sent[-1][1] == "Unknown command"
    say(bot, "hello")
    assert sent[-1][1].startswith("Use slash commands")


def test_errors_are_reported_to_the_chat(bot, linked, sent):
    bot.labels[CHAT] = {"1": "missing-task"}
    say(bot, "/done 1")
    assert sent[-1][1].startswith("⚠️ Task missing-task not found")


def test_due_reminders_are_sent_once(bot, linked, sent):
    now = local_now().replace(second=0, microsecond=0)
    bot.task_manager.create_task(linked['id'], "Piano", due_date=now.date(), due_time=now.strftime('%H:%M'))

    assert bot.send_due_reminders(now) == 1
    assert sent[-1] == (CHAT, "🕒 Task time! Piano")
    assert bot.send_due_reminders(now) == 0


def test_tick_runs_rollover_once_a_day(bot, linked, sent, monkeypatch):
    calls = []
    monkeypatch.setattr(bot.task_manager, "rollover", lambda day: calls.append(day))
    now = datetime(2024, 5, 6, 8, 0)
    bot.tick(now)
    bot.tick(now + timedelta(minutes=1))
    bot.tick(now + timedelta(days=1))
    assert calls == [now.date(), (now + timedelta(days=1)).date()]


def test_get_updates(bot, monkeypatch):
    update = {"update_id": 7, "message": {"chat": {"id": CHAT}, "text": "/start"}}

    def fake_get(url, params=None, timeout=None):
        assert url.endswith("/getUpdates")
        assert params["offset"] == 0
        return FakeResponse({"ok": True, "result": [update]})

    monkeypatch.setattr("coaching.telegram.requests.get", fake_get)
    assert bot.get_updates() == [update]
