import sys

from petitionseal.audit import check_record
from petitionseal.db import Database
from petitionseal.security import is_audit_hash
from petitionseal.stores import SqlitePetitionStore, SqliteSignatureStore


def main():
    if len(sys.argv) not in (3, 4):
        print("Usage: python verifier/verify_record.py <database.db> <audit_hash> [--petition]")
        raise SystemExit(2)

    db = Database(sys.argv[1])
    audit_hash = sys.argv[2]
    check_petition = len(sys.argv) == 4 and sys.argv[3] == "--petition"

    if not is_audit_hash(audit_hash):
        print("INVALID: malformed audit hash"); return

    record = SqliteSignatureStore(db).find_by_audit_hash(audit_hash)
    if record is None:
        print("INVALID: no signature with this audit hash"); return

    petition = SqlitePetitionStore(db).find_by_id(record.petition_id) if check_petition else None
    problems = check_record(record, petition)
    if problems:
        print("INVALID: " + "; ".join(problems)); return

    print("VALID")


if __name__ == "__main__":
    main()
