import logging
import sys

from coaching.telegram import create_telegram_bot
from database.database import db

logger = logging.getLogger(__name__)

def main():
    """Run the Telegram bot until interrupted"""
    if not db.test_connection():
        sys.exit(1)
    db.create_tables()

    bot = None
    try:
        bot = create_telegram_bot()
        logger.info("📅 Coaching planner bot polling, reminders and rollover run from the same loop")
        bot.run_polling()
    except KeyboardInterrupt:
        logger.info("🛑 Bot stopped by user")
        if bot is not None:
            bot.stop()
    except ValueError as e:
        # Missing TELEGRAM_BOT_TOKEN
        logger.error(f"❌ {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
