ROLE_LEVELS: dict[str, int] = {
    "user": 0,
    "merchant": 1,
    "mentor": 2,
    "admin": 3,
}

ROLE_VALUES = set(ROLE_LEVELS.keys())


def normalize_role(role: str | None) -> str:
    normalized = (role or "").strip().lower()
    if normalized in ROLE_VALUES:
        return normalized
    return "user"


def has_role_at_least(role: str | None, minimum_role: str) -> bool:
    minimum = ROLE_LEVELS.get(normalize_role(minimum_role), 0)
    actual = ROLE_LEVELS.get(normalize_role(role), 0)
    return actual >= minimum
