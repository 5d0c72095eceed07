# sessionguard/app/routes/users.py
from flask import Blueprint, jsonify

from sessionguard.app.extensions import db
from sessionguard.app.middleware.auth_middleware import require_role
from sessionguard.app.models.user import UserRole
from sessionguard.app.services import auth_service

users_bp = Blueprint("users", __name__)


@users_bp.route("/<int:user_id>/deactivate", methods=["POST"])
@require_role(UserRole.ADMIN)
def deactivate_user(user_id: int):
    # Deactivation also revokes every session of the target user.
    result = auth_service.set_user_active(user_id=user_id, active=False, session=db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<int:user_id>/activate", methods=["POST"])
@require_role(UserRole.ADMIN)
def activate_user(user_id: int):
    result = auth_service.set_user_active(user_id=user_id, active=True, session=db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
