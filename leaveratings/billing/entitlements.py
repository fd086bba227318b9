from typing import Optional
from leaveratings.models import User

# Statuses that keep a subscription reference on the account
ACTIVE_STATUSES = frozenset({"active", "trialing"})

# Statuses that lift the free-tier ceiling. Trialing accounts are still metered.
UNLIMITED_STATUSES = frozenset({"active"})


def is_active_equivalent(status: Optional[str]) -> bool:
    return status in ACTIVE_STATUSES


def is_unlimited(status: Optional[str]) -> bool:
    return status in UNLIMITED_STATUSES


def apply_subscription_state(user: User, status: Optional[str], subscription_id: Optional[str]) -> bool:
    """
    Write (status, subscription_id) onto the account as a pair.

    Active-equivalent status with an id is stored as-is; anything else
    (past_due, canceled, unpaid, missing id, ...) clears both fields.
    Returns True when the account changed. Caller commits.
    """
    if is_active_equivalent(status) and subscription_id:
        new_status, new_id = status, subscription_id
    else:
        new_status, new_id = None, None

    if user.subscription_status == new_status and user.subscription_id == new_id:
        return False
    user.subscription_status = new_status
    user.subscription_id = new_id
    return True


def clear_subscription_state(user: User) -> bool:
    return apply_subscription_state(user, None, None)
