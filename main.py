import logging

import uvicorn

from coaching.config import API_PORT
from database.database import db

logger = logging.getLogger()

def main():
    logger.info(f"Running server on port {API_PORT}")
    db.create_tables()
    uvicorn.run("coaching.api:app", host="0.0.0.0", port=API_PORT, log_config=None)


if __name__ == '__main__':
    main()
    logger.info(f"Terminated.")
