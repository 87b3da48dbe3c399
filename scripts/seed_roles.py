"""
Seed the user/sales/admin roles, their permissions and the default e-mail
templates. Safe to re-run: existing rows are kept, missing grants added.

Usage:
    python scripts/seed_roles.py [--admin-email EMAIL --admin-password PASSWORD]
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from solarcrm.auth.roles import RoleName
from solarcrm.db import Base, SessionLocal, engine
from solarcrm.errors import ConflictError
from solarcrm.models.models import User
from solarcrm.services import email_templates, permissions, users


def seed(admin_email=None, admin_password=None, admin_name="Administrator"):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = permissions.seed_roles(db)
        print(f"Permissions created: {created['permissions']}")
        print(f"Roles created: {created['roles']}")
        print(f"Grants added: {created['grants']}")

        templates = email_templates.seed_templates(db)
        print(f"Email templates created: {templates}")

        if admin_email and admin_password:
            existing = db.query(User).filter(User.email == admin_email).first()
            if existing:
                permissions.assign_role(db, existing, RoleName.ADMIN)
                print(f"User '{admin_email}' already exists, ensured admin role")
            else:
                try:
                    users.create_user(db, admin_name, admin_email, admin_password, RoleName.ADMIN)
                    print(f"Admin user '{admin_email}' created")
                except ConflictError as e:
                    print(f"WARNING: {e.detail}")

        db.commit()
        print("Seed completed")
    except Exception as e:
        db.rollback()
        print(f"ERROR: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed roles, permissions and e-mail templates")
    parser.add_argument("--admin-email", help="Create (or promote) this user as admin")
    parser.add_argument("--admin-password", help="Password for a newly created admin")
    parser.add_argument("--admin-name", default="Administrator")
    args = parser.parse_args()
    seed(args.admin_email, args.admin_password, args.admin_name)
