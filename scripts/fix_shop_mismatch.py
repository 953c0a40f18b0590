import sys
import os
import argparse

# Add the project root directory to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session

from melt.config import SHOP_DOMAIN
from melt.database import engine, create_db_and_tables
from melt.services.maintenance import migrate_shop_domain


def main():
    parser = argparse.ArgumentParser(description="Move every record from one shop domain to another")
    parser.add_argument("old_shop", help="Shop domain the records were written under")
    parser.add_argument("new_shop", nargs="?", default=SHOP_DOMAIN, help="Target shop domain, defaults to SHOP_DOMAIN")
    args = parser.parse_args()

    create_db_and_tables()
    with Session(engine) as session:
        try:
            result = migrate_shop_domain(session, args.old_shop, args.new_shop)
        except ValueError as e:
            print(f"Error: {e}")
            sys.exit(1)

    print(f"Migrated {args.old_shop} -> {args.new_shop}")
    for table, count in result.items():
        print(f"  {table}: {count} rows")


if __name__ == "__main__":
    main()
