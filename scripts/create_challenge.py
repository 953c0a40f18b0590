import sys
import os
import argparse

# Add the project root directory to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session
from datetime import datetime, timedelta

from melt.config import SHOP_DOMAIN
from melt.database import engine, create_db_and_tables
from melt.models.common import utcnow
from melt.services.challenges import create_challenge
from melt.services.validation import FormValidationError


def parse_args():
    parser = argparse.ArgumentParser(description="Create a weight loss challenge for a shop")
    parser.add_argument("--shop", default=SHOP_DOMAIN, help="Shop domain, defaults to SHOP_DOMAIN")
    parser.add_argument("--name", default="Summer Weight Loss Challenge")
    parser.add_argument("--description", default="Join our challenge and transform your body!")
    parser.add_argument("--start", type=datetime.fromisoformat, help="Start date (ISO 8601), defaults to now")
    parser.add_argument("--days", type=int, default=90, help="Length of the challenge in days")
    parser.add_argument("--tag", dest="customer_tag", default=None, help="Optional customer tag")
    parser.add_argument("--inactive", action="store_true", help="Create the challenge switched off")
    return parser.parse_args()


def main():
    args = parse_args()
    if not args.shop:
        print("No shop given. Pass --shop or set SHOP_DOMAIN.")
        sys.exit(1)

    create_db_and_tables()
    start_date = args.start or utcnow()
    end_date = start_date + timedelta(days=args.days)

    with Session(engine) as session:
        try:
            challenge = create_challenge(
                session,
                args.shop,
                args.name,
                start_date,
                end_date,
                description=args.description,
                customer_tag=args.customer_tag,
                is_active=not args.inactive,
            )
        except FormValidationError as e:
            for field, message in e.errors.items():
                print(f"{field}: {message}")
            sys.exit(1)

        print(f"Created challenge {challenge.challenge_id} for {challenge.shop}")
        print(f"  Name:  {challenge.name}")
        print(f"  Start: {challenge.start_date.isoformat()}")
        print(f"  End:   {challenge.end_date.isoformat()}")
        print(f"  Active: {challenge.is_active}")


if __name__ == "__main__":
    main()
