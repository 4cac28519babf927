# tugofwar/state/keys.py

"""
Single contract for store paths.

Never hardcode path strings outside this file.
"""

# =========================
# GAME
# =========================

# Root of the shared game object
# {
#   score: int
#   players: {<player_id>: {nickname: str, team: "left" | "right"}}
# }
GAME_ROOT = "currentGame"

# Signed integer, the only multi-writer path
SCORE_PATH = f"{GAME_ROOT}/score"

# Mapping player_id -> Player, each entry written only by its owner
PLAYERS_PATH = f"{GAME_ROOT}/players"

# =========================
# LAYOUT
# =========================

# Paths holding a single JSON value
LEAF_PATHS = frozenset({SCORE_PATH})

# Paths holding a mapping whose children are written independently
COLLECTION_PATHS = frozenset({PLAYERS_PATH})

# =========================
# CHANGE FEED
# =========================

CHANGES_CHANNEL_PREFIX = "changes:"


def player_path(player_id: str) -> str:
    return f"{PLAYERS_PATH}/{player_id}"


def split_path(path: str) -> list[str]:
    return [p for p in path.strip("/").split("/") if p]


def is_related(a: str, b: str) -> bool:
    """True when one path equals, contains or lies inside the other."""
    a, b = a.strip("/"), b.strip("/")
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")
