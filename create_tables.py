from dotenv import load_dotenv
from sqlalchemy import inspect
import logging

load_dotenv()

from db.init import Base, engine, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def missing_tables(bind=None):
    existing = set(inspect(bind or engine).get_table_names())
    return sorted(set(Base.metadata.tables) - existing)

if __name__ == "__main__":
    init_db()
    missing = missing_tables()
    if missing:
        logger.error(f"Tables still missing after create_all: {', '.join(missing)}")
        raise SystemExit(1)
    logger.info(f"Schema ready on {engine.url.render_as_string(hide_password=True)}: "
                f"{', '.join(sorted(Base.metadata.tables))}")
