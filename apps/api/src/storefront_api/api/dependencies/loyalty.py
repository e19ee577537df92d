"""Accessors for the app-scoped loyalty services."""

from __future__ import annotations

from fastapi import Request

from storefront_api.services.loyalty import (
    LoyaltyAccountEngine,
    LoyaltyEarningService,
    RedemptionService,
)


def get_loyalty_engine(request: Request) -> LoyaltyAccountEngine:
    return request.app.state.loyalty_engine


def get_redemption_service(request: Request) -> RedemptionService:
    return request.app.state.redemption_service


def get_earning_service(request: Request) -> LoyaltyEarningService:
    return request.app.state.earning_service
