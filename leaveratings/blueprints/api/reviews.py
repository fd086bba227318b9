from flask import current_app, jsonify, request
from . import bp
from leaveratings.extensions import csrf, limiter
from leaveratings.models import Business
from leaveratings.services import reviews
from leaveratings.services.generator import POSITIVE_RATINGS, get_review_generator
from leaveratings.services.usage import ReviewOutcome, can_perform_action, get_usage_summary, record_action


@csrf.exempt
@bp.post("/reviews/generate")
@limiter.limit("30 per minute")
def generate_review():
    """
    Public review page → AI draft for a positive rating.

    403 {"error": "limit_reached"} when the owning account is out of free
    drafts; a failed generation is still a 200 with an empty review.
    """
    data = request.get_json(silent=True) or {}
    slug = (data.get("business_slug") or "").strip()
    try:
        rating = int(data.get("rating"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_rating"}), 400
    if rating not in POSITIVE_RATINGS:
        return jsonify({"error": "invalid_rating", "detail": "Only positive ratings receive a drafted review"}), 400

    business = Business.query.filter_by(slug=slug).first() if slug else None
    if business is None:
        return jsonify({"error": "not_found"}), 404

    if not can_perform_action(business.user_id):
        summary = get_usage_summary(business.user_id)
        return jsonify({
            "error": "limit_reached",
            "limit": summary.limit,
            "current_usage": summary.current_usage,
        }), 403

    text = get_review_generator().generate(
        business_name=business.name,
        location=business.location,
        keywords=business.keyword_list(),
        rating=rating,
        previous_reviews=reviews.recent_review_texts(business.id),
    )
    if text:
        record_action(business.user_id, business.id, ReviewOutcome(rating=rating, text=text))

    return jsonify({"success": True, "review": text})


FEEDBACK_MAX_LENGTH = 5000


@csrf.exempt
@bp.post("/reviews/feedback")
@limiter.limit("10 per minute")
def send_feedback():
    """
    Private feedback from the public page (the path for 1-2 star experiences).
    Stored for the owner, never published and never metered.
    """
    data = request.get_json(silent=True) or {}
    slug = (data.get("business_slug") or "").strip()
    feedback = (data.get("feedback") or "").strip()
    customer_email = (data.get("customer_email") or "").strip().lower() or None
    try:
        rating = int(data.get("rating"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_rating"}), 400
    if rating not in (1, 2, 3, 4):
        return jsonify({"error": "invalid_rating"}), 400
    if not feedback:
        return jsonify({"error": "feedback_required"}), 400
    if len(feedback) > FEEDBACK_MAX_LENGTH:
        return jsonify({"error": "feedback_too_long", "max_length": FEEDBACK_MAX_LENGTH}), 400
    if customer_email and ("@" not in customer_email or len(customer_email) > 255):
        return jsonify({"error": "invalid_email"}), 400

    business = Business.query.filter_by(slug=slug).first() if slug else None
    if business is None:
        return jsonify({"error": "not_found"}), 404

    review = reviews.save_review(
        business_id=business.id,
        rating=rating,
        generated_review=None,
        feedback=feedback,
        customer_email=customer_email,
    )
    current_app.logger.info(
        "review.feedback.received",
        extra={"business_id": business.id, "review_id": review.id, "rating": rating},
    )
    return jsonify({"success": True, "message": "Feedback received"})
