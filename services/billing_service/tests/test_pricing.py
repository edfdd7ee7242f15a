from __future__ import annotations

from decimal import Decimal

import pytest

from services.billing_service.app.pricing import (
    TOKEN_PACKAGES,
    calculate_token_cost,
    get_best_value_package,
    get_package,
    get_price_per_token,
    has_enough_tokens,
)


def test_action_costs():
    assert calculate_token_cost("project_creation") == Decimal("1.5")
    assert calculate_token_cost("chat_analysis", 3) == Decimal("1.5")
    assert calculate_token_cost("preview_build") == Decimal("0")
    assert calculate_token_cost("deployment") == Decimal("0")


def test_unknown_action_is_rejected():
    with pytest.raises(ValueError):
        calculate_token_cost("mining")


def test_has_enough_tokens():
    assert has_enough_tokens(Decimal("1.5"), "project_creation") is True
    assert has_enough_tokens(Decimal("1.49"), "project_creation") is False


def test_package_catalogue():
    assert [package.id for package in TOKEN_PACKAGES] == ["starter", "pro", "business", "enterprise"]
    pro = get_package("pro")
    assert pro is not None
    assert pro.total_tokens == 55
    assert pro.popular is True
    assert get_package("missing") is None


def test_price_per_token_and_best_value():
    starter = get_package("starter")
    assert get_price_per_token(starter) == Decimal("14.95")
    assert get_price_per_token(starter, "USD") == Decimal("0.50")
    assert get_best_value_package().id == "enterprise"
