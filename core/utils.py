def get_current_business(user):
    """
    Return the primary Business for this user, or None.

    If multiple Business rows exist for a user, the oldest owned one wins.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return None
    from .models import Business  # local import to avoid circular deps

    return Business.objects.filter(owner_user=user, is_deleted=False).order_by("id").first()
