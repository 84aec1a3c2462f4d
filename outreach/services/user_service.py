import logging
from datetime import datetime
from typing import Any, Dict

from flask_jwt_extended import create_access_token, create_refresh_token
from sqlalchemy.exc import IntegrityError

from outreach.exceptions import AuthenticationError, DuplicateKeyError
from outreach.extensions import db
from outreach.models import QuotaLedger, User
from outreach.models.quota import get_plan_limits


class UserService:
    """Account registration, login and plan management"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def create_user(self, email, password, name, plan='free', role='user') -> User:
        """Create a user together with its quota ledger"""
        get_plan_limits(plan)
        email = email.strip().lower()

        if User.query.filter_by(email=email).first():
            raise DuplicateKeyError('User with this email already exists')

        user = User(email=email, name=name, plan=plan, role=role)
        user.set_password(password)
        db.session.add(user)

        try:
            db.session.flush()
            QuotaLedger.create_for_user(user.id, plan, commit=False)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateKeyError('User with this email already exists')

        self.logger.info(f"Created {role} account {user.email} on {plan} plan")
        return user

    def register_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        user = self.create_user(
            email=data['email'],
            password=data['password'],
            name=data['name'],
            plan=data.get('plan', 'free')
        )
        return {'user': user.to_dict(), 'tokens': self.generate_tokens(user)}

    def authenticate(self, email, password) -> Dict[str, Any]:
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None or not user.check_password(password):
            self.logger.info(f"Failed login attempt for {email}")
            raise AuthenticationError('Invalid email or password')
        if not user.is_active:
            raise AuthenticationError('Account is deactivated')

        user.last_login = datetime.utcnow()
        db.session.commit()
        return {'user': user.to_dict(), 'tokens': self.generate_tokens(user)}

    def generate_tokens(self, user):
        return {
            'access_token': create_access_token(identity=user.id, additional_claims={'role': user.role}),
            'refresh_token': create_refresh_token(identity=user.id)
        }

    def change_plan(self, user, new_plan, new_limits=None) -> QuotaLedger:
        """Move a user to another plan; all buckets restart from zero"""
        ledger = QuotaLedger.get_or_create_for_user(user)
        ledger.update_plan(new_plan, new_limits, commit=False)
        user.plan = new_plan
        db.session.commit()
        self.logger.info(f"User {user.id} moved to {new_plan} plan")
        return ledger
