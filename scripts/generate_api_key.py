#!/usr/bin/env python3
"""
Generate access keys for dashboard users, plus a JWT secret for .env.
Prints matching inserts for the users collection table.
"""

import argparse
import secrets

from carecoord.session import generate_api_key

EXAMPLE_USERS = [
    ("D001", "doctor", "Dr. Jane Smith"),
    ("N001", "nurse", "Sam Lee"),
    ("U001", "patient", "Alex Morgan"),
    ("R001", "responsible", "Jordan Morgan"),
]


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--prefix", default="cc")
    args = parser.parse_args()

    print("=" * 70)
    print("Care Coordination Access Key Generator")
    print("=" * 70)
    print()
    print(f"JWT_SECRET_KEY={secrets.token_hex(32)}")
    print("(copy the line above to your .env file)")
    print()

    print("=" * 70)
    print("SQL Insert Example:")
    print("=" * 70)
    for user_id, role, name in EXAMPLE_USERS:
        key = generate_api_key(args.prefix)
        print(f"""
-- For a {role}:
INSERT INTO users (id, role, "apiKey", profile)
VALUES ('{user_id}', '{role}', '{key}', '{{"name": "{name}"}}');""")
    print()
    print("=" * 70)
    print("Note: the user id must match the doctors/nurses document id, the")
    print("patient's uid, or the patients' responsiblePartyId.")
    print("=" * 70)


if __name__ == "__main__":
    main()
