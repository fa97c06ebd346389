"""Create the administrator account, or reset its password if it exists.

Administrators cannot register through the API.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure the project root is on sys.path so ``appliance_rental`` imports when run directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from appliance_rental import create_app
from appliance_rental.constants import Role
from appliance_rental.extensions import db
from appliance_rental.models import AuthAccount, User


def create_admin(email: str, password: str, name: str = "Administrator") -> None:
    app = create_app()

    with app.app_context():
        db.create_all()
        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(name=name, email=email, role=Role.ADMIN)
            db.session.add(user)
            db.session.flush()
            print(f"Created administrator: {email}")
        elif user.role != Role.ADMIN:
            print(f"Promoting '{email}' from {user.role} to {Role.ADMIN}")
            user.role = Role.ADMIN

        account = db.session.get(AuthAccount, user.user_id)
        if account is None:
            account = AuthAccount(user_id=user.user_id, password_hash="")
            db.session.add(account)

        account.password_hash = generate_password_hash(password)
        db.session.commit()

        print(f"Password for administrator '{email}' has been set.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or reset the administrator account.")
    parser.add_argument("email", help="Administrator email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--name", default="Administrator", help="Display name")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    create_admin(args.email, args.password, args.name)


if __name__ == "__main__":
    main()
