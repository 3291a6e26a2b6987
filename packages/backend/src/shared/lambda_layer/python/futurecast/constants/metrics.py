"""
Santiment metric catalogue.

Each sync group polls a fixed window ending "now" and keeps the latest
datapoint of every metric. The historical backfill replays the daily group
over a long lookback.
"""

from datetime import timedelta

from futurecast.models.metrics import MetricCategory, MetricDefinition

SANTIMENT_GRAPHQL_URL = "https://api.santiment.net/graphql"

FIVE_MINUTE_GROUP = "5m"
DAILY_GROUP = "daily"
TRENDS_GROUP = "trends"

FIVE_MINUTE_METRICS = (
    MetricDefinition(type="fees", category=MetricCategory.FINANCIAL, santiment_metric="fees",
                     interval="5m", include_incomplete_data=True),
    MetricDefinition(type="volume_usd_5m", category=MetricCategory.FINANCIAL, santiment_metric="volume_usd",
                     interval="5m"),
    MetricDefinition(type="marketcap_usd", category=MetricCategory.FINANCIAL, santiment_metric="marketcap_usd",
                     interval="5m"),
    MetricDefinition(type="price_usd_5m", category=MetricCategory.FINANCIAL, santiment_metric="price_usd",
                     interval="5m"),
    MetricDefinition(type="social_volume_total", category=MetricCategory.SOCIAL,
                     santiment_metric="social_volume_total", interval="5m"),
    MetricDefinition(type="social_dominance_total", category=MetricCategory.SOCIAL,
                     santiment_metric="social_dominance_total", interval="5m"),
    MetricDefinition(type="community_messages_count_total", category=MetricCategory.SOCIAL,
                     santiment_metric="community_messages_count_total", interval="5m"),
)

DAILY_METRICS = (
    MetricDefinition(type="price_ohlc", category=MetricCategory.FINANCIAL, santiment_metric="price_usd", ohlc=True),
    MetricDefinition(type="fully_diluted_valuation_usd", category=MetricCategory.FINANCIAL,
                     santiment_metric="fully_diluted_valuation_usd"),
    MetricDefinition(type="annual_inflation_rate", category=MetricCategory.FINANCIAL,
                     santiment_metric="annual_inflation_rate"),
    MetricDefinition(type="gini_index", category=MetricCategory.FINANCIAL, santiment_metric="gini_index"),
    MetricDefinition(type="mean_coin_age", category=MetricCategory.FINANCIAL, santiment_metric="mean_age"),
    MetricDefinition(type="btc_s_and_p_price_divergence", category=MetricCategory.FINANCIAL,
                     santiment_metric="btc_s_and_p_price_divergence"),
    MetricDefinition(type="daily_closing_price_usd", category=MetricCategory.FINANCIAL,
                     santiment_metric="daily_closing_price_usd"),
    MetricDefinition(type="rsi_1d", category=MetricCategory.FINANCIAL, santiment_metric="rsi_1d"),
    MetricDefinition(type="price_volatility_1d", category=MetricCategory.FINANCIAL,
                     santiment_metric="price_volatility_1d"),
)

TRENDS_METRICS = (
    MetricDefinition(type="emerging_trends", category=MetricCategory.SOCIAL, interval="1h", per_asset=False),
    MetricDefinition(type="trending_words", category=MetricCategory.SOCIAL, interval="1h", per_asset=False),
    MetricDefinition(type="sentiment_balance", category=MetricCategory.SOCIAL,
                     santiment_metric="sentiment_balance_total", interval="1h"),
    MetricDefinition(type="trending_words_rank", category=MetricCategory.SOCIAL,
                     santiment_metric="trending_words_rank", interval="1h", include_incomplete_data=True),
)

METRIC_GROUPS = {
    FIVE_MINUTE_GROUP: FIVE_MINUTE_METRICS,
    DAILY_GROUP: DAILY_METRICS,
    TRENDS_GROUP: TRENDS_METRICS,
}

# Look-back window queried by each sync group
SYNC_WINDOWS = {
    FIVE_MINUTE_GROUP: timedelta(minutes=10),
    DAILY_GROUP: timedelta(hours=24),
    TRENDS_GROUP: timedelta(hours=2),
}

TRENDING_WORDS_SIZE = 10
HISTORICAL_LOOKBACK_DAYS = 3650  # 10 years
HISTORICAL_BATCH_SIZE = 25  # DynamoDB BatchWriteItem limit
