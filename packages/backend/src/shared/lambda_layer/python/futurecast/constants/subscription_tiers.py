"""
Centralized subscription tier configuration constants.

This module defines all subscription tier limits and prices in one place
so the API handlers, the webhook and the scheduled jobs agree on them.
"""

# Trial Tier Configuration
TRIAL_MAX_ASSETS = 1
TRIAL_MAX_REPORTS_PER_DAY = 1
TRIAL_PRICE_USD = 0
TRIAL_ADDITIONAL_ASSET_PRICE_USD = 0
TRIAL_DAYS = 7
TRIAL_UPGRADE_TIER = "basic"

# Basic Tier Configuration
BASIC_MAX_ASSETS = 5
BASIC_MAX_REPORTS_PER_DAY = 1
BASIC_PRICE_USD = 19.99
BASIC_ADDITIONAL_ASSET_PRICE_USD = 1.99

# Pro Tier Configuration
PRO_MAX_ASSETS = 20
PRO_MAX_REPORTS_PER_DAY = 3
PRO_PRICE_USD = 49.99
PRO_ADDITIONAL_ASSET_PRICE_USD = 1.99

# Elite Tier Configuration
ELITE_MAX_ASSETS = 999999  # Effectively unlimited
ELITE_MAX_REPORTS_PER_DAY = 24
ELITE_PRICE_USD = 99.99
ELITE_ADDITIONAL_ASSET_PRICE_USD = 0
ELITE_ADDITIONAL_REPORT_PRICE_USD = 0.99

# Assets at or above this count are displayed as unlimited
UNLIMITED_ASSETS_THRESHOLD = 999999

# Pricing Configuration
CURRENCY = "USD"
CURRENCY_SYMBOL = "$"
BILLING_INTERVAL = "month"

# Chat request packs sold as one-off payments (requests -> price in cents)
REQUEST_PACKAGES = {
    50: 499,
    100: 899,
    250: 1999,
}

# Feature descriptions for marketing
TRIAL_DESCRIPTION = "Try FutureCast with one asset and a daily report"
BASIC_DESCRIPTION = "Daily reports for a small portfolio"
PRO_DESCRIPTION = "Several reports a day across a growing watchlist"
ELITE_DESCRIPTION = "Unlimited assets and near real-time reporting"
