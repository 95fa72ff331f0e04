#!/usr/bin/env python3
"""
Grant a role (admin by default) to a canonical user.

Usage:
    python scripts/promote_admin.py --email ops@ad.id
    python scripts/promote_admin.py --user-id 3f2c... --role staff
    python scripts/promote_admin.py --list
"""
import argparse
import sys

from sqlalchemy import select

from app.db.repository import AuthRepository
from app.db.session import SessionLocal
from app.models.models import User


def promote(email: str | None = None, user_id: str | None = None, role: str = "admin") -> bool:
    db = SessionLocal()
    try:
        repo = AuthRepository(db)
        if email:
            user = repo.find_user_by_email(email)
            identifier = f"email={email}"
        elif user_id:
            user = repo.get_user(user_id)
            identifier = f"id={user_id}"
        else:
            print("❌ Must provide either --email or --user-id")
            return False

        if not user:
            print(f"❌ User not found: {identifier}")
            return False

        if user.has_role(role):
            print(f"✅ User already has role {role}: {user.email} (ID: {user.id})")
            return True

        old_roles = list(user.roles or [])
        # JSON column: assign a new list so the change is detected
        user.roles = [*old_roles, role]
        db.commit()

        print(f"✅ Granted {role}:")
        print(f"   ID: {user.id}")
        print(f"   Email: {user.email}")
        print(f"   Old roles: {', '.join(old_roles) or '(none)'}")
        print(f"   New roles: {', '.join(user.roles)}")
        return True
    except Exception as e:
        db.rollback()
        print(f"❌ Error: {e}")
        return False
    finally:
        db.close()


def list_privileged() -> None:
    db = SessionLocal()
    try:
        users = db.scalars(select(User).order_by(User.email)).all()
        for role in ("admin", "staff"):
            print(f"\n=== {role.upper()} USERS ===")
            matches = [u for u in users if u.has_role(role)]
            if not matches:
                print("  (none)")
            for u in matches:
                print(f"  ID: {u.id}, Email: {u.email}")
        print()
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Grant a role to a user")
    parser.add_argument("--email", help="User email address")
    parser.add_argument("--user-id", help="User ID")
    parser.add_argument("--role", default="admin", choices=["admin", "staff"])
    parser.add_argument("--list", action="store_true", help="List current admins and staff")

    args = parser.parse_args()

    if args.list:
        list_privileged()
    elif args.email or args.user_id:
        success = promote(email=args.email, user_id=args.user_id, role=args.role)
        sys.exit(0 if success else 1)
    else:
        parser.print_help()
        sys.exit(1)
