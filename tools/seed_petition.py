import argparse

from petitionseal.config import Settings
from petitionseal.db import Database
from petitionseal.models import Petition
from petitionseal.stores import SqlitePetitionStore
from petitionseal.util import generate_id

DEFAULT_BODY = """We, the undersigned, call on our local council to protect the green spaces,
rivers and wildlife of our community.

- Preserve existing parks and woodland from development
- Fund regular water quality monitoring for local rivers
- Publish an annual report on local environmental health
"""


def main():
    ap = argparse.ArgumentParser(description="Seed a petition into the PetitionSeal database")
    ap.add_argument("--db", default=None, help="database path (defaults to DATABASE_PATH)")
    ap.add_argument("--slug", default="environmental-protection")
    ap.add_argument("--title", default="Protect Our Local Environment")
    ap.add_argument("--version", default="v1.0")
    ap.add_argument("--body-file", default=None, help="markdown file with the petition text")
    ap.add_argument("--goal", type=int, default=1000)
    ap.add_argument("--closed", action="store_true", help="seed the petition as not accepting signatures")
    args = ap.parse_args()

    db = Database(args.db or Settings.from_env().database_path)
    db.init_schema()
    store = SqlitePetitionStore(db)

    existing = store.find_by_slug(args.slug)
    if existing:
        store.set_live(existing.id, not args.closed)
        print(f"EXISTS: {existing.slug} ({existing.id}) live={not args.closed}")
        return

    body = DEFAULT_BODY
    if args.body_file:
        with open(args.body_file, "r", encoding="utf-8") as f:
            body = f.read()

    p = store.insert(Petition(
        id=generate_id(12),
        slug=args.slug,
        title=args.title,
        body_markdown=body,
        version=args.version,
        goal_count=args.goal,
        is_live=not args.closed,
    ))
    print(f"SEEDED: {p.slug} ({p.id})")
    print(f"petition_hash: {p.snapshot().content_hash()}")


if __name__ == "__main__":
    main()
