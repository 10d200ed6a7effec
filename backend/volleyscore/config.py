import os


def _canon_side(val, default="home"):
    """
    Normalize a team side to exactly 'home' or 'away':
      - defaults to ``default`` when unset/empty
      - accepts the Spanish 'local'/'visitante' labels used by older exports
      - rejects anything else
    """
    val = (val or default).strip().lower()
    if val in ("local",):
        val = "home"
    elif val in ("visitante", "visitor"):
        val = "away"
    if val not in ("home", "away"):
        raise ValueError(f"team side must be 'home' or 'away' (got {val!r})")
    return val


def _int_env(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})")
    if value < 0:
        raise ValueError(f"{name} cannot be negative")
    return value


def _float_env(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})")
    if value < 0:
        raise ValueError(f"{name} cannot be negative")
    return value


def _types_env(name, default):
    raw = os.getenv(name)
    if raw is None:
        return frozenset(default)
    return frozenset(t.strip().upper() for t in raw.split(",") if t.strip())


DEFAULT_OUR_SIDE = _canon_side(os.getenv("VOLLEYSCORE_OUR_SIDE"))

AUTOSAVE_EVENT_THRESHOLD = _int_env("VOLLEYSCORE_AUTOSAVE_EVENTS", 10)
AUTOSAVE_INTERVAL_SECONDS = _float_env("VOLLEYSCORE_AUTOSAVE_SECONDS", 30.0)
AUTOSAVE_TRIGGER_TYPES = _types_env("VOLLEYSCORE_AUTOSAVE_TYPES", {"SET_END"})
