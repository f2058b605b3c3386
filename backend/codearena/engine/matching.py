import random
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class MatchPairing:
    participant_id: str
    challenge_match_setting_id: str


def distribute_participants(
    participant_ids: Sequence[str],
    challenge_match_setting_ids: Sequence[str],
    *,
    rng: random.Random | None = None,
) -> list[MatchPairing]:
    """
    Shuffle the participants and deal them round-robin over the problems, so
    no problem ends up with more than one participant above any other.
    """
    if not challenge_match_setting_ids:
        raise ValueError("At least one problem is required to distribute participants.")

    rng = rng or random.Random()
    shuffled = list(dict.fromkeys(participant_ids))
    rng.shuffle(shuffled)

    setting_count = len(challenge_match_setting_ids)
    return [
        MatchPairing(
            participant_id=participant_id,
            challenge_match_setting_id=challenge_match_setting_ids[index % setting_count],
        )
        for index, participant_id in enumerate(shuffled)
    ]
