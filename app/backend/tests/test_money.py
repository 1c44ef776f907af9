from __future__ import annotations

from decimal import Decimal

import pytest

from buildtrack.domain.money import Money, has_whole_cents, money_sum, percentage


def test_from_major_rounds_half_up_to_cents() -> None:
    assert Money.from_major(Decimal("10.005")).cents == 1001
    assert Money.from_major("0.01").cents == 1
    assert Money.from_major(3).to_major() == Decimal("3.00")


def test_float_input_is_rejected() -> None:
    with pytest.raises(TypeError):
        Money.from_major(0.1)  # type: ignore[arg-type]


def test_repeated_cent_additions_do_not_drift() -> None:
    total = money_sum(Money.from_major("0.10") for _ in range(1000))

    assert total.to_major() == Decimal("100.00")


def test_percentage_of_rounds_to_cent() -> None:
    assert Money.from_major("1000.00").percentage_of(Decimal("21")) == Money.from_major("210.00")
    assert Money.from_major("0.05").percentage_of(Decimal("10")) == Money.from_major("0.01")


def test_percentage_handles_zero_whole() -> None:
    assert percentage(Money.from_major("5.00"), Money.zero()) == Decimal("0.00")
    assert percentage(Money.from_major("500.00"), Money.from_major("1210.00")) == Decimal("41.32")


def test_clamp_non_negative() -> None:
    assert (Money.from_major("1.00") - Money.from_major("2.50")).clamp_non_negative() == Money.zero()


def test_has_whole_cents() -> None:
    assert has_whole_cents(Decimal("12.34"))
    assert has_whole_cents(Decimal("12"))
    assert not has_whole_cents(Decimal("12.345"))
    assert not has_whole_cents(Decimal("NaN"))
