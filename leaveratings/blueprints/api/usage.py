from flask import jsonify
from flask_login import login_required, current_user
from . import bp
from leaveratings.services.usage import get_usage_summary


@bp.get("/usage")
@login_required
def usage():
    """Lifetime drafts used and the free-tier limit (null when unlimited). Display only."""
    return jsonify(get_usage_summary(current_user.id).to_dict())
