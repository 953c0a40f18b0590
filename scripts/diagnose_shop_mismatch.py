import sys
import os

# Add the project root directory to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session

from melt.database import engine, create_db_and_tables
from melt.services.maintenance import list_challenges_by_shop, shop_domain_stats


def main():
    create_db_and_tables()
    with Session(engine) as session:
        stats = shop_domain_stats(session)
        challenges = list_challenges_by_shop(session)

    print("=== Rows per shop domain ===")
    for row in stats["shops"]:
        print(f"{row['shop']}: {row['challenges']} challenges, "
              f"{row['participants']} participants, {row['submissions']} submissions")

    print("\n=== Challenges ===")
    for challenge in challenges:
        state = "active" if challenge["is_active"] else "inactive"
        print(f"[{challenge['challenge_id']}] {challenge['name']} ({challenge['shop']}, {state}) "
              f"- {challenge['participants']} participants")

    if stats["has_mismatch"]:
        print("\nMore than one shop domain found. Use scripts/fix_shop_mismatch.py to merge them.")
    else:
        print("\nNo shop domain mismatch found.")


if __name__ == "__main__":
    main()
