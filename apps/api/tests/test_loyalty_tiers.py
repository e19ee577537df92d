from decimal import Decimal

import pytest

from storefront_api.domain.loyalty import (
    DEFAULT_TIERS,
    REFERRAL_POINTS,
    REVIEW_POINTS,
    Tier,
    calculate_earned_points,
    get_tier,
    next_tier,
    points_to_next_tier,
    resolve_tier,
    validate_tier_table,
)


def test_default_tier_table_is_well_formed() -> None:
    validate_tier_table(DEFAULT_TIERS)
    assert [tier.id for tier in DEFAULT_TIERS] == ["bronze", "silver", "gold", "platinum"]
    assert [tier.min_points for tier in DEFAULT_TIERS] == [0, 500, 1000, 2500]
    assert [tier.multiplier for tier in DEFAULT_TIERS] == [
        Decimal("1"),
        Decimal("1.5"),
        Decimal("2"),
        Decimal("3"),
    ]


@pytest.mark.parametrize(
    ("balance", "expected"),
    [
        (0, "bronze"),
        (499, "bronze"),
        (500, "silver"),
        (999, "silver"),
        (1000, "gold"),
        (2499, "gold"),
        (2500, "platinum"),
        (100_000, "platinum"),
    ],
)
def test_resolve_tier_thresholds(balance: int, expected: str) -> None:
    assert resolve_tier(balance).id == expected


def test_resolve_tier_prefers_later_tier_on_shared_threshold() -> None:
    tiers = (
        Tier(id="base", name="Base", min_points=0, multiplier=Decimal("1")),
        Tier(id="first", name="First", min_points=100, multiplier=Decimal("1.5")),
        Tier(id="second", name="Second", min_points=100, multiplier=Decimal("2")),
    )

    assert resolve_tier(100, tiers).id == "second"
    assert resolve_tier(150, tiers).id == "second"
    assert resolve_tier(99, tiers).id == "base"


def test_next_tier_and_progress() -> None:
    silver = get_tier("silver")
    platinum = get_tier("platinum")
    assert silver is not None and platinum is not None

    assert next_tier(silver).id == "gold"
    assert next_tier(platinum) is None
    assert points_to_next_tier(650, silver) == 350
    assert points_to_next_tier(5000, platinum) == 0
    assert get_tier("diamond") is None


@pytest.mark.parametrize(
    "tiers",
    [
        (),
        (Tier(id="base", name="Base", min_points=10, multiplier=Decimal("1")),),
        (
            Tier(id="base", name="Base", min_points=0, multiplier=Decimal("1")),
            Tier(id="base", name="Again", min_points=5, multiplier=Decimal("1")),
        ),
        (
            Tier(id="base", name="Base", min_points=0, multiplier=Decimal("1")),
            Tier(id="up", name="Up", min_points=0, multiplier=Decimal("2")),
        ),
        (Tier(id="base", name="Base", min_points=0, multiplier=Decimal("0")),),
    ],
)
def test_validate_tier_table_rejects_misconfiguration(tiers) -> None:
    with pytest.raises(ValueError):
        validate_tier_table(tiers)


@pytest.mark.parametrize(
    ("amount", "tier_id", "expected"),
    [
        (Decimal("50"), "gold", 100),
        (Decimal("0.99"), "silver", 1),
        (Decimal("199.99"), "bronze", 199),
        ("33.33", "platinum", 99),
        (0, "silver", 0),
        (Decimal("0"), "platinum", 0),
    ],
)
def test_calculate_earned_points_floors(amount, tier_id: str, expected: int) -> None:
    tier = get_tier(tier_id)
    assert tier is not None
    assert calculate_earned_points(amount, tier) == expected


def test_calculate_earned_points_rejects_negative_amount() -> None:
    with pytest.raises(ValueError):
        calculate_earned_points(Decimal("-1"), DEFAULT_TIERS[0])


def test_fixed_award_constants() -> None:
    assert REVIEW_POINTS == 50
    assert REFERRAL_POINTS == 200
