"""OASIS Section G (functional status) scale definitions.

Each item is an ``IntEnum`` whose members are the valid scores, so range
checks and description lookups live on the item itself:

    >>> M1830Bathing.maximum()
    4
    >>> M1830Bathing(2).description
    'Able to bathe in shower or tub with intermittent assistance'
    >>> M1830Bathing.coerce("9") is None
    True

0 always means fully independent; higher values mean more dependency.
"""
from collections import namedtuple
from enum import IntEnum
import math


class ScaleItem(IntEnum):
    """Bounded integer score with a fixed description per value."""

    def __new__(cls, value, description):
        obj = int.__new__(cls, value)
        obj._value_ = value
        obj.description = description
        return obj

    @classmethod
    def minimum(cls):
        return min(m.value for m in cls)

    @classmethod
    def maximum(cls):
        return max(m.value for m in cls)

    @classmethod
    def coerce(cls, value):
        """Return ``value`` as a valid score for this item, or None.

        Accepts ints, integral floats and numeric strings. Anything else
        (booleans, fractions, out-of-range numbers, text) is treated as not
        assessed rather than rounded or clamped.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            try:
                value = float(value)
            except ValueError:
                return None
        if isinstance(value, float):
            if not math.isfinite(value) or not value.is_integer():
                return None
            value = int(value)
        if not isinstance(value, int):
            return None
        if value < cls.minimum() or value > cls.maximum():
            return None
        return int(value)


class M1800Grooming(ScaleItem):
    INDEPENDENT = 0, "Able to groom self unaided, with or without the use of assistive devices or adapted methods"
    SETUP_HELP = 1, "Grooming utensils must be placed within reach before able to complete grooming activities"
    ASSISTANCE = 2, "Someone must assist the patient to groom self"
    DEPENDENT = 3, "Patient depends entirely upon someone else for grooming needs"


class M1810DressUpper(ScaleItem):
    INDEPENDENT = 0, "Able to get clothes out of closets and drawers, put them on and remove them from the upper body without assistance"
    SETUP_HELP = 1, "Able to dress upper body without assistance if clothing is laid out or handed to the patient"
    ASSISTANCE = 2, "Someone must help the patient put on upper body clothing"
    DEPENDENT = 3, "Patient depends entirely upon another person to dress the upper body"


class M1820DressLower(ScaleItem):
    INDEPENDENT = 0, "Able to obtain, put on, and remove clothing and shoes without assistance"
    SETUP_HELP = 1, "Able to dress lower body without assistance if clothing and shoes are laid out or handed to the patient"
    ASSISTANCE = 2, "Someone must help the patient put on undergarments, slacks, socks or nylons, and shoes"
    DEPENDENT = 3, "Patient depends entirely upon another person to dress lower body"


class M1830Bathing(ScaleItem):
    INDEPENDENT = 0, "Able to bathe self in shower or tub independently"
    WITH_DEVICES = 1, "With the use of devices, is able to bathe self in shower or tub independently"
    INTERMITTENT_HELP = 2, "Able to bathe in shower or tub with intermittent assistance"
    PRESENCE_THROUGHOUT = 3, "Participates in bathing self in shower or tub, but requires presence of another person throughout the bath"
    UNABLE = 4, "Unable to use the shower or tub and is bathed by another person"


class M1840ToiletTransfer(ScaleItem):
    INDEPENDENT = 0, "Able to get to and from the toilet and transfer independently with or without a device"
    SUPERVISED = 1, "When reminded, assisted, or supervised by another person, able to get to and from the toilet and transfer"
    BEDSIDE_COMMODE = 2, "Unable to get to and from the toilet but is able to use a bedside commode"
    BEDPAN = 3, "Unable to get to and from the toilet or bedside commode but is able to use a bedpan/urinal"


class M1845ToiletingHygiene(ScaleItem):
    INDEPENDENT = 0, "Able to manage toileting hygiene and clothing management without assistance"
    SETUP_HELP = 1, "Able to manage toileting hygiene and clothing management if supplies/implements are laid out for the patient"
    ASSISTANCE = 2, "Someone must help the patient to maintain toileting hygiene and/or adjust clothing"
    DEPENDENT = 3, "Patient depends entirely upon another person to maintain toileting hygiene"


class M1850Transferring(ScaleItem):
    INDEPENDENT = 0, "Able to independently transfer"
    MINIMAL_ASSISTANCE = 1, "Able to transfer with minimal human assistance or with use of an assistive device"
    BEARS_WEIGHT = 2, "Able to bear weight and pivot during the transfer process but unable to transfer self"
    NO_WEIGHT_BEARING = 3, "Unable to transfer self and is unable to bear weight or pivot when transferred by another person"
    BEDFAST_TURNS = 4, "Bedfast, unable to transfer but is able to turn and position self in bed"
    BEDFAST = 5, "Bedfast, unable to transfer and is unable to turn and position self"


class M1860Ambulation(ScaleItem):
    INDEPENDENT = 0, "Able to independently walk on even and uneven surfaces without a device"
    ONE_HANDED_DEVICE = 1, "With the use of a one-handed device (cane, single crutch), able to independently walk"
    TWO_HANDED_DEVICE = 2, "Requires use of a two-handed device (walker or crutches) to walk alone"
    HUMAN_ASSISTANCE = 3, "Able to walk only with the supervision or assistance of another person at all times"
    CHAIRFAST_WHEELS_SELF = 4, "Chairfast, unable to ambulate but is able to wheel self independently"
    CHAIRFAST = 5, "Chairfast, unable to ambulate and is unable to wheel self"
    BEDFAST = 6, "Bedfast, unable to ambulate or be up in a chair"


ScaleField = namedtuple("ScaleField", "code attr json_key label scale")

# form order
SECTION_G_FIELDS = (
    ScaleField("M1800", "m1800_grooming", "m1800Grooming", "Grooming", M1800Grooming),
    ScaleField("M1810", "m1810_dress_upper", "m1810DressUpper", "Dress Upper Body", M1810DressUpper),
    ScaleField("M1820", "m1820_dress_lower", "m1820DressLower", "Dress Lower Body", M1820DressLower),
    ScaleField("M1830", "m1830_bathing", "m1830Bathing", "Bathing", M1830Bathing),
    ScaleField("M1840", "m1840_toilet_transfer", "m1840ToiletTransfer", "Toilet Transferring", M1840ToiletTransfer),
    ScaleField("M1845", "m1845_toileting_hygiene", "m1845ToiletingHygiene", "Toileting Hygiene", M1845ToiletingHygiene),
    ScaleField("M1850", "m1850_transferring", "m1850Transferring", "Transferring", M1850Transferring),
    ScaleField("M1860", "m1860_ambulation", "m1860Ambulation", "Ambulation/Locomotion", M1860Ambulation),
)

FIELDS_BY_CODE = {f.code: f for f in SECTION_G_FIELDS}
FIELD_ATTRS = tuple(f.attr for f in SECTION_G_FIELDS)
TOTAL_FIELDS = len(SECTION_G_FIELDS)


def describe(code, value):
    """Description for ``value`` of item ``code`` (e.g. ``"M1800"``).

    Raises ``KeyError`` for an unknown code and ``ValueError`` for a value
    outside the item's range.
    """
    return FIELDS_BY_CODE[code].scale(value).description


def completion_percentage(scores):
    """Share of assessed items, 0-100, given a mapping attr -> score."""
    filled = sum(1 for attr in FIELD_ATTRS if scores.get(attr) is not None)
    # half-up, so 5/8 reports 63 rather than 62
    return math.floor(filled * 100 / TOTAL_FIELDS + 0.5)


def empty_scores():
    return {attr: None for attr in FIELD_ATTRS}
