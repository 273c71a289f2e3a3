# config.py
import os

# MySQL database configuration
MYSQL_HOST = os.getenv("MYSQL_HOST", "127.0.0.1")
MYSQL_PORT = os.getenv("MYSQL_PORT", "3306")
MYSQL_USER = os.getenv("MYSQL_USER", "root")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "root")
MYSQL_DB = os.getenv("MYSQL_DB", "election_ledger")
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"mysql+pymysql://{MYSQL_USER}:{MYSQL_PASSWORD}@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}",
)

# audit chain
POW_DIFFICULTY = int(os.getenv("POW_DIFFICULTY", "2"))  # leading zeros of each block hash

# seconds to wait for an election's exclusive region before giving up
LOCK_TIMEOUT = float(os.getenv("LOCK_TIMEOUT", "5"))

# field limits, counted in unicode code points
NAME_MIN_LEN = 3
NAME_MAX_LEN = 50
DESCRIPTION_MIN_LEN = 3
DESCRIPTION_MAX_LEN = 100

ZERO_ADDRESS = "0x" + "0" * 40
OWNER_ADDRESS = os.getenv("OWNER_ADDRESS")

# signed requests older (or further in the future) than this many seconds are refused
SIGNATURE_MAX_AGE = int(os.getenv("SIGNATURE_MAX_AGE", "300"))
