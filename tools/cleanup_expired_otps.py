import sys

from petitionseal.config import Settings
from petitionseal.db import Database
from petitionseal.stores import SqliteOtpStore
from petitionseal.util import now_epoch


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else Settings.from_env().database_path
    db = Database(path)
    db.init_schema()
    removed = SqliteOtpStore(db).delete_expired(now_epoch())
    print(f"removed {removed} expired OTP requests")


if __name__ == "__main__":
    main()
