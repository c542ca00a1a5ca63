"""Core application configuration & tunable business rules.

Money limits, settlement cooling, extraction provider settings and the role
groups used by the cascade and deletion guards are centralized here so they can
be adjusted without diving into service logic. Values are module constants
(mutable dicts so tests can monkeypatch them) with environment overrides.
"""
from __future__ import annotations

import os

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE: str | None = os.getenv("LOG_FILE", "logs/app.log") or None
CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

# --------------------------------- Wallets -------------------------------- #
WALLET_SETTINGS: dict[str, int | str] = {
	"currency": os.getenv("WALLET_CURRENCY", "INR"),
	# Ceiling on the available bucket; credits beyond it are rejected.
	"max_balance_paise": int(os.getenv("WALLET_MAX_BALANCE_PAISE", "10000000")),  # 1 lakh rupees
}

# ------------------------------- Settlement ------------------------------- #
SETTLEMENT_SETTINGS: dict[str, int | tuple[str, ...]] = {
	# Days between proof verification and earliest settlement.
	"cooling_period_days": int(os.getenv("COOLING_PERIOD_DAYS", "14")),
	# Order ids kept in a bulk-freeze audit row; the rest are only counted.
	"audit_order_id_sample": int(os.getenv("AUDIT_ORDER_ID_SAMPLE", "50")),
	# Affiliate statuses that count as settled for deletion guards.
	"closed_affiliate_statuses": (
		"Approved_Settled",
		"Cap_Exceeded",
		"Rejected",
		"Fraud_Alert",
	),
}

# ---------------------------- Proof Extraction ---------------------------- #
EXTRACTION_SETTINGS: dict[str, str | float | int | bool | None] = {
	"provider_url": os.getenv("EXTRACTION_PROVIDER_URL", "http://localhost:9000/extract"),
	"api_key": os.getenv("EXTRACTION_PROVIDER_API_KEY") or None,
	"timeout_seconds": float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "30")),
	# Hold a per-(order, proof type) lock across the provider call.
	"per_key_lock": os.getenv("EXTRACTION_PER_KEY_LOCK", "true").lower() != "false",
	"prewarm_max_items": int(os.getenv("EXTRACTION_PREWARM_MAX_ITEMS", "500")),
	# Rough provider cost used only for the savings estimate.
	"cost_per_call_usd": 0.001,
}

# -------------------------------- Realtime -------------------------------- #
REALTIME_SETTINGS: dict[str, tuple[str, ...]] = {
	# Roles that receive every cascade notification in addition to scoped codes.
	"staff_roles": ("admin", "ops"),
}

# ------------------------------ Access Roles ------------------------------ #
# Accounts holding any of these roles are never deleted through the API.
PRIVILEGED_ROLES: tuple[str, ...] = ("admin", "ops")

__all__ = [
	"LOG_LEVEL",
	"LOG_FILE",
	"CORS_ORIGINS",
	# Rule groups
	"WALLET_SETTINGS",
	"SETTLEMENT_SETTINGS",
	"EXTRACTION_SETTINGS",
	"REALTIME_SETTINGS",
	"PRIVILEGED_ROLES",
]
