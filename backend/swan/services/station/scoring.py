"""Task success rolls, balance bonus and point awards.

Task success uses one model everywhere: the odds start at
``1 - 0.1 * difficulty`` with +/-0.1 of noise, gain 0.1 for every task
target the station currently sits within tolerance of, and are clamped to
[0.1, 0.95] before the roll.
"""

from .catalog import CHALLENGE_TYPES, MAX_REPUTATION, OPTIMAL_BANDS, PARAMETER_FIELDS, TARGET_TOLERANCES

TARGET_PREFIX = 'target.'

MIN_SUCCESS = 0.1
MAX_SUCCESS = 0.95

PERFECT_BALANCE_BONUS = 3
GOOD_BALANCE_BONUS = 1
GOOD_BALANCE_THRESHOLD = 4

TASK_POINTS_PER_DIFFICULTY = 10
CODE_RESET_POINTS = 10


def task_targets(task):
    return {
        name[len(TARGET_PREFIX):]: value
        for name, value in task.parameters.items()
        if name.startswith(TARGET_PREFIX)
    }


def matched_targets(task, params):
    """Names of the task targets the station is currently within tolerance of."""
    if params is None:
        return []
    matched = []
    for name, target in task_targets(task).items():
        if name not in TARGET_TOLERANCES:
            continue
        if abs(params[name] - target) <= TARGET_TOLERANCES[name]:
            matched.append(name)
    return matched


def success_probability(task, params, rng):
    probability = 1 - task.difficulty * 0.1 + rng.uniform(-0.1, 0.1)
    probability += 0.1 * len(matched_targets(task, params))
    return min(MAX_SUCCESS, max(MIN_SUCCESS, probability))


def roll_task_success(task, params, rng):
    probability = success_probability(task, params, rng)
    return rng.random() < probability, probability


def in_band(name, value):
    low, high = OPTIMAL_BANDS[name]
    return low <= value <= high


def balance_bonus(params):
    """+1 per parameter in its optimal band, then one tier on top.

    All six in band adds 3 (total 9); four or five in band adds 1;
    fewer adds nothing.
    """
    balanced = sum(1 for name in PARAMETER_FIELDS if in_band(name, params[name]))
    if balanced == len(PARAMETER_FIELDS):
        return balanced + PERFECT_BALANCE_BONUS
    if balanced >= GOOD_BALANCE_THRESHOLD:
        return balanced + GOOD_BALANCE_BONUS
    return balanced


def task_points(task):
    return task.difficulty * TASK_POINTS_PER_DIFFICULTY


def challenge_success_chance(kind, reputation):
    """Base odds for the challenge type scaled by the initiator's reputation.

    The reputation factor is ``reputation / MAX_REPUTATION`` held to
    [0.5, 1.5], so a fresh operator challenges at half the base odds.
    """
    factor = min(1.5, max(0.5, reputation / MAX_REPUTATION))
    return CHALLENGE_TYPES[kind]['baseSuccess'] * factor


def roll_challenge(kind, reputation, rng):
    chance = challenge_success_chance(kind, reputation)
    return rng.random() < chance, chance
