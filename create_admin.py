"""
Script to create or reset an admin user

Usage: python create_admin.py <email> <password> [admin|superadmin]
"""
import sys

from app import create_app
from models import db
from models.admin import ADMIN_ROLES, Admin


def create_admin(email, password, role='admin'):
    """Create or reset admin user"""
    if role not in ADMIN_ROLES:
        raise SystemExit(f"Unknown role: {role}")
    app = create_app()

    with app.app_context():
        email = email.strip().lower()
        admin = Admin.query.filter_by(email=email).first()

        if admin:
            # Reset existing admin password
            admin.set_password(password)
            admin.is_active = True
            admin.role = role
            db.session.commit()
            print("[SUCCESS] Admin user password reset successfully!")
        else:
            admin = Admin(
                username=email.split('@')[0],
                email=email,
                role=role,
                is_active=True
            )
            admin.set_password(password)
            db.session.add(admin)
            db.session.commit()
            print("[SUCCESS] Admin user created successfully!")

        print(f"Email: {email}  Role: {role}")


if __name__ == '__main__':
    if len(sys.argv) < 3:
        print(__doc__.strip())
        sys.exit(1)
    create_admin(*sys.argv[1:4])
