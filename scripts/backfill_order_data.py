import sys
import os
import argparse

# Add the project root directory to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session

from melt.config import SHOP_DOMAIN
from melt.database import engine, create_db_and_tables
from melt.services.maintenance import backfill_order_data
from melt.services.shopify import ShopifyAdminClient


def main():
    parser = argparse.ArgumentParser(description="Fill in missing Shopify order data for participants")
    parser.add_argument("--shop", default=SHOP_DOMAIN, help="Shop domain, defaults to SHOP_DOMAIN")
    args = parser.parse_args()

    if not args.shop:
        print("No shop given. Pass --shop or set SHOP_DOMAIN.")
        sys.exit(1)

    client = ShopifyAdminClient()
    if not client.configured:
        print("SHOPIFY_ADMIN_ACCESS_TOKEN is not set.")
        sys.exit(1)

    create_db_and_tables()
    with Session(engine) as session:
        stats = backfill_order_data(session, args.shop, client)

    print(f"Updated: {stats['updated']}")
    print(f"Failed:  {stats['failed']}")
    print(f"Skipped: {stats['skipped']}")
    print(f"Total:   {stats['total']}")


if __name__ == "__main__":
    main()
