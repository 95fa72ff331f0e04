#!/usr/bin/env python3
"""List canonical users with their linked providers."""
import argparse

from sqlalchemy import desc, select

from app.db.repository import AuthRepository
from app.db.session import SessionLocal
from app.models.models import User


def main(limit: int) -> None:
    db = SessionLocal()
    try:
        users = db.scalars(select(User).order_by(desc(User.created_at)).limit(limit)).all()

        print('\n' + '=' * 80)
        print('REGISTERED USERS')
        print('=' * 80 + '\n')

        if not users:
            print('No users found in database.\n')
            return

        for i, user in enumerate(users, 1):
            print(f'{i}. {user.name or "N/A"}')
            print(f'   Email: {user.email} ({"verified" if user.email_verified else "unverified"})')
            print(f'   Providers: {", ".join(sorted(user.linked_providers)) or "none"}')
            print(f'   Roles: {", ".join(user.roles or []) or "none"}')
            print(f'   Created: {user.created_at}  Last login: {user.last_login or "never"}')
            print(f'   ID: {user.id}')
            print('-' * 80)

        stats = AuthRepository(db).stats()
        print(
            f'\nTotal users: {stats["users"]}  '
            f'active sessions: {stats["sessions"]}  '
            f'issued tokens: {stats["issued_tokens"]}\n'
        )
    finally:
        db.close()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=100)
    main(parser.parse_args().limit)
