#!/usr/bin/env python
"""Create (or look up) a user and print a session token for it.

Login is handled outside this service; this script gives local setups and
manual testing a valid session without it.

Constraints:
- Refuses to run in staging or prod (CHATRELAY_ENV check)
- Idempotent: an existing username is reused, never duplicated
- Never runs automatically (manual invocation only)

Usage:
    DATABASE_URL=... python scripts/create_user.py alice [--admin] [--days 7]

    # Then, for example:
    curl -H "Authorization: Bearer <token>" http://localhost:8000/conversations
"""

import argparse
import os
import sys


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("username")
    parser.add_argument("--admin", action="store_true", help="mark a new user as admin")
    parser.add_argument("--days", type=int, default=7, help="token validity in days")
    args = parser.parse_args()

    # 1. Environment check (hard fail in staging/prod)
    env = os.getenv("CHATRELAY_ENV", "local")
    if env not in ("local", "test"):
        print(f"ERROR: create_user.py refuses to run in CHATRELAY_ENV={env}")
        return 1

    # 2. Check DATABASE_URL
    if not os.getenv("DATABASE_URL"):
        print("ERROR: DATABASE_URL environment variable must be set")
        return 1

    from sqlalchemy import select

    from chatrelay.auth.verifier import mint_session_token
    from chatrelay.config import get_settings
    from chatrelay.db.models import User
    from chatrelay.db.session import get_session_factory

    settings = get_settings()
    db = get_session_factory()()
    try:
        username = args.username.strip()
        user = db.scalar(select(User).where(User.username == username))
        if user is None:
            user = User(username=username, is_admin=args.admin)
            db.add(user)
            db.commit()
            print(f"Created user {username} ({user.id})")
        else:
            print(f"Using existing user {username} ({user.id})")

        token = mint_session_token(
            settings.effective_jwt_secret,
            user.id,
            username=user.username,
            is_admin=user.is_admin,
            expires_in=args.days * 24 * 3600,
        )
    finally:
        db.close()

    print(f"Session token ({settings.session_cookie_name} cookie or Bearer header):")
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(main())
