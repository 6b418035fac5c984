#!/usr/bin/env python3
"""Create a session token for local testing of the Constitution RAG API."""

import sys
import uuid
import argparse
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

from execution.constitution_rag.auth import create_session_jwt


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--user-id", default=None, help="User UUID (random if omitted)")
    parser.add_argument("--email", default="dev@localhost")
    parser.add_argument("--name", default="dev-local")
    args = parser.parse_args()

    user_id = args.user_id or str(uuid.uuid4())
    token = create_session_jwt(user_id, email=args.email, name=args.name)

    print("\n" + "=" * 50)
    print(f"Session token for user {user_id}")
    print("=" * 50)
    print(f"\n  Authorization: Bearer {token}\n")
    print("=" * 50)


if __name__ == "__main__":
    main()
