from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base
import mysql.connector
from mysql.connector import Error

from healthvault.config import DATABASE_URL
from healthvault.utils.logger import logger


def init_db():
    """Create the MySQL database named in DATABASE_URL if it does not exist yet.

    SQLite and other backends create their storage on first connect, so this
    is a no-op for them.
    """
    url = make_url(DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        return
    try:
        connection = mysql.connector.connect(
            host=url.host or "localhost",
            port=url.port or 3306,
            user=url.username,
            password=url.password,
        )
        cursor = connection.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{url.database}`")
        logger.info("Database '%s' is ready.", url.database)
        cursor.close()
        connection.close()
    except Error as e:
        logger.error("Error while creating database: %s", e)


connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
