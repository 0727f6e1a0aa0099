# tests/test_challenge_codec.py

from datetime import time

import pytest

from meit.errors import InvalidChallengeTarget
from meit.schemas.challenge import AmountMinTarget, CategoryTarget, FrequencyTarget, TimeWindowTarget
from meit.services.challenge_codec import INT32_MAX, decode_target, encode_target


class TestFrequency:
    def test_packs_visits_and_days(self):
        assert encode_target(FrequencyTarget(visits=3, days=7)) == 3007

    def test_largest_values_survive(self):
        packed = encode_target(FrequencyTarget(visits=999, days=999))
        assert packed == 999999
        assert decode_target("frequency", packed) == FrequencyTarget(visits=999, days=999)

    @pytest.mark.parametrize("visits,days", [(0, 7), (1000, 7), (3, 0), (3, 1000)])
    def test_out_of_range_is_rejected(self, visits, days):
        with pytest.raises(InvalidChallengeTarget):
            encode_target(FrequencyTarget(visits=visits, days=days))

    def test_corrupt_stored_value(self):
        with pytest.raises(InvalidChallengeTarget):
            decode_target("frequency", 3000)


class TestTimeWindow:
    def test_round_trip(self):
        target = TimeWindowTarget(start=time(14, 0), end=time(16, 30))
        packed = encode_target(target)
        assert packed == 14001630
        assert decode_target("time_based", packed) == target

    def test_window_over_midnight(self):
        target = TimeWindowTarget(start=time(22, 0), end=time(2, 0))
        assert decode_target("time_based", encode_target(target)) == target

    def test_empty_window_is_rejected(self):
        with pytest.raises(InvalidChallengeTarget):
            encode_target(TimeWindowTarget(start=time(9, 0), end=time(9, 0)))

    def test_seconds_are_rejected(self):
        with pytest.raises(InvalidChallengeTarget):
            encode_target(TimeWindowTarget(start=time(9, 0, 30), end=time(10, 0)))

    def test_invalid_stored_time(self):
        with pytest.raises(InvalidChallengeTarget):
            decode_target("time_based", 25000900)


class TestAmountAndCategory:
    def test_amount_min(self):
        assert encode_target(AmountMinTarget(amount=50)) == 50
        assert decode_target("amount_min", INT32_MAX) == AmountMinTarget(amount=INT32_MAX)

    @pytest.mark.parametrize("amount", [0, -1, INT32_MAX + 1])
    def test_amount_out_of_range(self, amount):
        with pytest.raises(InvalidChallengeTarget):
            encode_target(AmountMinTarget(amount=amount))

    def test_category_lives_outside_the_integer(self):
        assert encode_target(CategoryTarget(category="coffee")) == 0
        assert decode_target("category", 0, "coffee") == CategoryTarget(category="coffee")

    def test_category_requires_a_name(self):
        with pytest.raises(InvalidChallengeTarget):
            encode_target(CategoryTarget(category="   "))
        with pytest.raises(InvalidChallengeTarget):
            decode_target("category", 0, None)

    def test_unknown_type(self):
        with pytest.raises(InvalidChallengeTarget):
            decode_target("birthday", 1)
