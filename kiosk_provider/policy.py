"""Authorization policy applied before any request work starts."""


def may_proceed(provider_is_authorized_context: bool, target_requires_authorization: bool) -> bool:
    """False only when an unauthorized provider asks for an auth-only target."""
    return provider_is_authorized_context or not target_requires_authorization
