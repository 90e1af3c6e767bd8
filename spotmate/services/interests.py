from spotmate.core.match_config import INTEREST_OPTIONS, REQUIRED_INTEREST_COUNT

INTEREST_EMOJI = {
    "Coffee": "☕",
    "Gym": "💪",
    "Books": "📚",
    "Running": "🏃",
    "Science": "🔬",
    "Social Science": "🧠",
    "Art": "🎨",
    "Music": "🎵",
    "Movies": "🎬",
    "Outdoors": "🌲",
}


def validate_interests(interests: list[str]) -> tuple[bool, str | None]:
    if len(interests) != REQUIRED_INTEREST_COUNT:
        return False, f"Please select exactly {REQUIRED_INTEREST_COUNT} interests (you have {len(interests)})"
    if len(set(interests)) != len(interests):
        return False, "Interests must be distinct"
    if any(i not in INTEREST_OPTIONS for i in interests):
        return False, "Invalid interest selection"
    return True, None


def common_interests(mine: list[str] | None, theirs: list[str] | None) -> list[str]:
    if not mine or not theirs:
        return []
    return [i for i in mine if i in theirs]


def interest_emoji(interest: str) -> str:
    return INTEREST_EMOJI.get(interest, "✨")
