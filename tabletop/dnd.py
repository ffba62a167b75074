"""
dnd.py
------
Rules arithmetic: ability modifiers, HP clamping and dice notation.
"""

import random
import re
from dataclasses import dataclass, field
from typing import List

from .errors import ValidationError

ABILITIES = ('strength', 'dexterity', 'constitution', 'intelligence', 'wisdom', 'charisma')

ABILITY_NAMES = {
    'STR': 'Strength',
    'DEX': 'Dexterity',
    'CON': 'Constitution',
    'INT': 'Intelligence',
    'WIS': 'Wisdom',
    'CHA': 'Charisma',
}

DICE_SIDES = (2, 4, 6, 8, 10, 12, 20, 100)
MAX_DICE = 100
ROLL_TYPES = ('normal', 'advantage', 'disadvantage')

# "d20", "2d6", "4d8+3", "1d20 - 1"
DICE_PATTERN = re.compile(r'^\s*(\d*)\s*d\s*(\d+)\s*(?:([+-])\s*(\d+))?\s*$', re.IGNORECASE)


def ability_modifier(score):
    return (score - 10) // 2


def format_modifier(modifier):
    return '+%d' % modifier if modifier >= 0 else str(modifier)


def ability_name(ability):
    """Full name for an ability code or key: 'DEX' and 'dexterity' both give 'Dexterity'."""
    return ABILITY_NAMES.get(ability[:3].upper(), ability)


def clamp_hp(hp, max_hp):
    """Keep hit points within ``[0, max_hp]``."""
    return max(0, min(hp, max_hp))


@dataclass
class DiceExpression:
    count: int
    sides: int
    modifier: int = 0

    @property
    def dice_type(self):
        return 'd%d' % self.sides

    def __str__(self):
        text = '%dd%d' % (self.count, self.sides)
        if self.modifier:
            text += format_modifier(self.modifier)
        return text


@dataclass
class RollResult:
    expression: DiceExpression
    roll_type: str
    results: List[int]
    kept: List[int] = field(default_factory=list)
    total: int = 0

    @property
    def natural_twenties(self):
        return self.kept.count(20) if self.expression.sides == 20 else 0

    @property
    def natural_ones(self):
        return self.kept.count(1) if self.expression.sides == 20 else 0


def parse_dice(notation):
    match = DICE_PATTERN.match(notation or '')
    if not match:
        raise ValidationError({'dice': ['Use dice notation such as d20, 2d6 or 1d8+3']})

    count = int(match.group(1)) if match.group(1) else 1
    sides = int(match.group(2))
    modifier = int(match.group(4)) if match.group(4) else 0
    if match.group(3) == '-':
        modifier = -modifier

    if not 1 <= count <= MAX_DICE:
        raise ValidationError({'dice': ['Roll between 1 and %d dice' % MAX_DICE]})
    if sides not in DICE_SIDES:
        raise ValidationError({'dice': ['Dice must have one of %s sides' % ', '.join(str(s) for s in DICE_SIDES)]})
    return DiceExpression(count, sides, modifier)


def roll(expression, roll_type='normal', extra_modifier=0, rng=random):
    """Roll ``expression``. Advantage and disadvantage only apply to a single d20."""
    if isinstance(expression, str):
        expression = parse_dice(expression)
    if roll_type not in ROLL_TYPES:
        raise ValidationError({'roll_type': ['Must be one of: %s' % ', '.join(ROLL_TYPES)]})
    if roll_type != 'normal' and (expression.count != 1 or expression.sides != 20):
        raise ValidationError({'roll_type': ['Advantage and disadvantage apply to a single d20']})

    if roll_type == 'normal':
        results = [rng.randint(1, expression.sides) for _ in range(expression.count)]
        kept = list(results)
    else:
        results = [rng.randint(1, 20), rng.randint(1, 20)]
        kept = [max(results)] if roll_type == 'advantage' else [min(results)]

    total = sum(kept) + expression.modifier + extra_modifier
    return RollResult(expression, roll_type, results, kept, total)
