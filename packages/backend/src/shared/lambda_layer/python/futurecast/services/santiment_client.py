"""
Santiment GraphQL API client.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from aws_lambda_powertools import Logger

from futurecast.constants.metrics import SANTIMENT_GRAPHQL_URL, TRENDING_WORDS_SIZE
from futurecast.services.aws import get_parameter
from futurecast.services.metrics_store import format_timestamp

logger = Logger()

REQUEST_TIMEOUT_SECONDS = 30

TIMESERIES_QUERY = """
query getMetric($metric: String!, $slug: String!, $from: DateTime!, $to: DateTime!, $interval: interval, $includeIncompleteData: Boolean) {
  getMetric(metric: $metric) {
    timeseriesData(
      slug: $slug
      from: $from
      to: $to
      interval: $interval
      includeIncompleteData: $includeIncompleteData
    ) {
      datetime
      value
    }
  }
}
"""

OHLC_QUERY = """
query getMetric($metric: String!, $slug: String!, $from: DateTime!, $to: DateTime!, $interval: interval) {
  getMetric(metric: $metric) {
    timeseriesData(
      slug: $slug
      from: $from
      to: $to
      interval: $interval
      aggregation: OHLC
    ) {
      datetime
      valueOhlc {
        open
        high
        close
        low
      }
    }
  }
}
"""

TRENDING_WORDS_QUERY = """
query getTrendingWords($from: DateTime!, $to: DateTime!, $size: Int!, $interval: interval) {
  getTrendingWords(from: $from, to: $to, size: $size, interval: $interval) {
    datetime
    topWords {
      word
      score
    }
  }
}
"""


class SantimentAPIError(Exception):
    """Raised when Santiment answers with an HTTP or GraphQL error"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SantimentClient:
    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key or get_parameter("santiment_api_key")
        if not self.api_key:
            raise SantimentAPIError("Santiment API key is not configured")
        self.session = session or requests.Session()

    def query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a GraphQL query and return its data.

        Raises:
            SantimentAPIError: On a non-2xx response or GraphQL errors
        """
        try:
            response = self.session.post(
                SANTIMENT_GRAPHQL_URL,
                json={"query": query, "variables": variables},
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Apikey {self.api_key}",
                },
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise SantimentAPIError(f"Santiment request failed: {e}") from e

        if not response.ok:
            raise SantimentAPIError(
                f"Santiment API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        payload = response.json()
        if payload.get("errors"):
            raise SantimentAPIError(f"GraphQL errors: {payload['errors']}", status_code=response.status_code)
        return payload.get("data") or {}

    def get_timeseries(
        self,
        metric: str,
        slug: str,
        from_date: datetime,
        to_date: datetime,
        interval: str = "1d",
        include_incomplete_data: bool = False,
    ) -> List[Dict[str, Any]]:
        data = self.query(
            TIMESERIES_QUERY,
            {
                "metric": metric,
                "slug": slug,
                "from": format_timestamp(from_date),
                "to": format_timestamp(to_date),
                "interval": interval,
                "includeIncompleteData": include_incomplete_data,
            },
        )
        return ((data.get("getMetric") or {}).get("timeseriesData")) or []

    def get_ohlc(
        self, metric: str, slug: str, from_date: datetime, to_date: datetime, interval: str = "1d"
    ) -> List[Dict[str, Any]]:
        data = self.query(
            OHLC_QUERY,
            {
                "metric": metric,
                "slug": slug,
                "from": format_timestamp(from_date),
                "to": format_timestamp(to_date),
                "interval": interval,
            },
        )
        return ((data.get("getMetric") or {}).get("timeseriesData")) or []

    def get_trending_words(
        self, from_date: datetime, to_date: datetime, size: int = TRENDING_WORDS_SIZE, interval: str = "1h"
    ) -> List[Dict[str, Any]]:
        data = self.query(
            TRENDING_WORDS_QUERY,
            {
                "from": format_timestamp(from_date),
                "to": format_timestamp(to_date),
                "size": size,
                "interval": interval,
            },
        )
        return data.get("getTrendingWords") or []
