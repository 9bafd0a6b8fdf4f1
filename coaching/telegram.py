import requests
import logging
import re
from datetime import date, datetime
from typing import Dict, Any, Optional, List
import time
from threading import Thread

from coaching.config import TELEGRAM_BOT_TOKEN
from coaching.errors import PlannerError
from coaching.habits import HabitTracker
from coaching.render import label_index, render_habits, render_tree
from coaching.task_manager import TaskManager, local_now
from coaching.users import UserService
from database.local_cache import LocalCache
from database.row_store import RowStore, StoreError

logger = logging.getLogger()

HELP_TEXT = (
    "Coaching planner ready.\n"
    "/link <email> - connect this chat to your account\n"
    "/today - today's tasks\n"
    "/done <label> - complete a task, /undo <label> - reopen it\n"
    "/add <title> [HH:MM] - add a task for today\n"
    "/habits - this week's habits, /habit <n> - toggle habit n for today"
)

_ADD_TIME_RE = re.compile(r'^(.*?)\s+([01]\d|2[0-3]):([0-5]\d)$')


class TelegramBot:
    def __init__(self, token: str = None, store: RowStore = None, cache: LocalCache = None):
        self.token = token or TELEGRAM_BOT_TOKEN
        if not self.token:
            raise ValueError("TELEGRAM_BOT_TOKEN not found in config")

        self.base_url = f"https://api.telegram.org/bot{self.token}"
        self.offset = 0
        self.running = False

        self.store = store or RowStore()
        self.task_manager = TaskManager(self.store, on_error=self._on_sync_error)
        self.habits = HabitTracker(self.store, cache=cache if cache is not None else LocalCache(),
                                   on_error=self._on_sync_error)
        self.users = UserService(self.store)

        # Labels shown in the last /today per chat
        self.labels: Dict[int, Dict[str, str]] = {}
        self.last_reminder_minute: Optional[str] = None
        self.last_rollover: Optional[date] = None

    def _on_sync_error(self, intent, message: str):
        logger.error(f"Sync of {intent.table}/{intent.row_id} parked: {message}")

    def send_message(self, chat_id: int, text: str) -> bool:
        url = f"{self.base_url}/sendMessage"
        data = {"chat_id": chat_id, "text": text}

        try:
            response = requests.post(url, data=data, timeout=10)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Failed to send message: {e}")
            return False

    def get_updates(self) -> List[Dict]:
        """Get updates from Telegram"""
        url = f"{self.base_url}/getUpdates"
        params = {
            "offset": self.offset,
            "timeout": 30
        }

        try:
            response = requests.get(url, params=params, timeout=40)
            if response.status_code == 200:
                data = response.json()
                if data["ok"]:
                    return data["result"]
        except requests.RequestException as e:
            logger.error(f"Failed to get updates: {e}")

        return []

    # Commands

    def handle_link_command(self, chat_id: int, email: str) -> None:
        if not email:
            self.send_message(chat_id, "Usage: /link <email>")
            return
        user = self.users.link_telegram(email, chat_id)
        if user:
            self.send_message(chat_id, f"Linked to {user['name']}. Reminders will arrive here.")
        else:
            self.send_message(chat_id, f"No account found for {email}")

    def handle_today_command(self, chat_id: int, user: Dict[str, Any]) -> None:
        today = local_now().date()
        tree = self.task_manager.day_tree(user['id'], today)
        self.labels[chat_id] = label_index(tree)
        self.send_message(chat_id, render_tree(tree, title=f"📅 {today.isoformat()}"))

    def _resolve_label(self, chat_id: int, user: Dict[str, Any], label: str) -> Optional[str]:
        if chat_id not in self.labels:
            self.labels[chat_id] = label_index(self.task_manager.day_tree(user['id'], local_now().date()))
        return self.labels[chat_id].get(label.strip().rstrip('.'))

    def handle_done_command(self, chat_id: int, user: Dict[str, Any], label: str, completed: bool = True) -> None:
        task_id = self._resolve_label(chat_id, user, label)
        if not task_id:
            self.send_message(chat_id, f"No task labelled '{label}'. Send /today first.")
            return
        task = self.task_manager.set_completed(task_id, completed)
        self.send_message(chat_id, f"{'✅' if completed else '↩️'} {task['title']}")

    def handle_add_command(self, chat_id: int, user: Dict[str, Any], args: str) -> None:
        if not args.strip():
            self.send_message(chat_id, "Usage: /add <title> [HH:MM]")
            return
        title, due_time = args.strip(), None
        match = _ADD_TIME_RE.match(title)
        if match:
            title, due_time = match.group(1), f"{match.group(2)}:{match.group(3)}"
        task = self.task_manager.create_task(user['id'], title, due_date=local_now().date(),
                                             due_time=due_time, is_private=True)
        self.labels.pop(chat_id, None)
        self.send_message(chat_id, f"📝 Added: {task['title']}" + (f" at {due_time}" if due_time else ""))

    def handle_habits_command(self, chat_id: int, user: Dict[str, Any]) -> None:
        grid = self.habits.week_grid(user['id'], local_now().date())
        self.send_message(chat_id, render_habits(grid))

    def handle_habit_command(self, chat_id: int, user: Dict[str, Any], args: str) -> None:
        habits = self.habits.habits(user['id'])
        if not args.isdigit() or not 1 <= int(args) <= len(habits):
            self.send_message(chat_id, f"Usage: /habit <1-{len(habits)}>" if habits else "No habits yet.")
            return
        habit = habits[int(args) - 1]
        done = self.habits.toggle(habit['id'], local_now().date())
        self.send_message(chat_id, f"{'🔥' if done else '○'} {habit['name']}")

    def handle_message(self, message: Dict[str, Any]) -> None:
        """Handle incoming message"""
        try:
            chat_id = message["chat"]["id"]
            text = (message.get("text") or "").strip()

            if not text.startswith("/"):
                self.send_message(chat_id, "Use slash commands. /start for help.")
                return

            parts = text.split(None, 1)
            command = parts[0].lower().split('@')[0]
            args = parts[1] if len(parts) > 1 else ""

            if command in ("/start", "/help"):
                self.send_message(chat_id, HELP_TEXT)
                return
            if command == "/link":
                self.handle_link_command(chat_id, args.strip())
                return

            user = self.users.by_telegram_chat(chat_id)
            if not user:
                logger.warning(f"Message from unlinked chat {chat_id}")
                self.send_message(chat_id, "This chat is not linked yet. Use /link <email>.")
                return

            if command == "/today":
                self.handle_today_command(chat_id, user)
            elif command == "/done":
                self.handle_done_command(chat_id, user, args, completed=True)
            elif command == "/undo":
                self.handle_done_command(chat_id, user, args, completed=False)
            elif command == "/add":
                self.handle_add_command(chat_id, user, args)
            elif command == "/habits":
                self.handle_habits_command(chat_id, user)
            elif command == "/habit":
                self.handle_habit_command(chat_id, user, args.strip())
            else:
                self.send_message(chat_id, "Unknown command")

        except PlannerError as e:
            self.send_message(message["chat"]["id"], f"⚠️ {e}")
        except StoreError as e:
            logger.error(f"Store error while handling message: {e}")
            self.send_message(message["chat"]["id"], f"❌ Could not save: {e}")

    # Scheduled jobs

    def send_due_reminders(self, now: datetime = None) -> int:
        """Notify linked users about tasks due this minute"""
        now = now or local_now()
        sent = 0
        for task in self.task_manager.due_reminders(now):
            user = self.store.get('users', task['user_id'])
            if not user or not user.get('telegram_chat_id'):
                continue
            if self.send_message(int(user['telegram_chat_id']), f"🕒 Task time! {task['title']}"):
                sent += 1
            self.task_manager.mark_notified(task)
        if sent:
            logger.info(f"Sent {sent} reminder(s) for {now:%H:%M}")
        return sent

    def tick(self, now: datetime = None) -> None:
        """Once-a-minute reminders and the daily rollover"""
        now = now or local_now()
        minute = now.strftime('%Y-%m-%d %H:%M')
        try:
            if self.last_rollover != now.date():
                self.task_manager.rollover(now.date())
                self.last_rollover = now.date()
            if self.last_reminder_minute != minute:
                self.send_due_reminders(now)
                self.last_reminder_minute = minute
        except StoreError as e:
            logger.error(f"Scheduled job failed: {e}")

    def run_polling(self) -> None:
        """Run bot with polling"""
        self.running = True
        logger.info("Telegram bot started polling...")
        self.habits.resume()

        while self.running:
            try:
                self.tick()
                updates = self.get_updates()

                for update in updates:
                    # Update offset
                    self.offset = update["update_id"] + 1

                    # Handle message
                    if "message" in update:
                        self.handle_message(update["message"])

                # Small delay to prevent hammering
                if not updates:
                    time.sleep(1)

            except KeyboardInterrupt:
                logger.info("Bot stopped by user")
                break
            except Exception as e:
                logger.error(f"Error in polling loop: {e}")
                time.sleep(5)  # Wait before retrying

        self.running = False

    def start(self) -> Thread:
        """Start bot in separate thread"""
        thread = Thread(target=self.run_polling, daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        """Stop the bot"""
        self.running = False
        self.task_manager.close()


# Usage
def create_telegram_bot():
    """Create a new TelegramBot instance"""
    return TelegramBot()
