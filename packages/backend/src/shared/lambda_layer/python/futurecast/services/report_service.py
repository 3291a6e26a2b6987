"""
Report Service

Builds the per-asset metric report and e-mails it to subscribers at their
scheduled times.
"""

import html
import math
import os
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from futurecast.models.asset import WEEKDAYS, AssetSubscription
from futurecast.models.metrics import MetricRecord
from futurecast.models.subscription import SubscriptionError
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.aws import get_ses_client
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.profile_service import ProfileService

logger = Logger()

REPORT_LOOKBACK_DAYS = 30
SCORE_THRESHOLD_PERCENT = 2.0
OHLC_METRIC_TYPES = ("price_ohlc",)
# Datapoint used as the "24h ago" reference must be this old (hours)
CHANGE_REFERENCE_MIN_HOURS = 20
CHANGE_REFERENCE_MAX_HOURS = 30
CHANGE_REFERENCE_SEARCH_DEPTH = 50


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def summarize_metric(records: Iterable[MetricRecord]) -> Optional[Dict[str, Any]]:
    """
    Latest value of a metric and its change against a datapoint 20-30 hours older.

    Returns:
        Dict with current_value, percent_change_24h and datetime, or None
        when there are no records
    """
    ordered = sorted(records, key=lambda r: _parse_time(r.datetime))
    if not ordered:
        return None

    latest = ordered[-1]
    current_value = latest.value or 0.0
    latest_time = _parse_time(latest.datetime)

    previous_value = current_value
    lower = timedelta(hours=CHANGE_REFERENCE_MIN_HOURS)
    upper = timedelta(hours=CHANGE_REFERENCE_MAX_HOURS)
    for record in reversed(ordered[-CHANGE_REFERENCE_SEARCH_DEPTH - 1:-1]):
        if lower <= latest_time - _parse_time(record.datetime) <= upper:
            previous_value = record.value or 0.0
            break

    percent_change = (current_value - previous_value) / previous_value * 100 if previous_value else 0.0
    if not math.isfinite(percent_change):
        percent_change = 0.0

    return {
        "current_value": current_value,
        "percent_change_24h": percent_change,
        "datetime": latest.datetime,
    }


def calculate_aggregate_score(summaries: Dict[str, Optional[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Score each metric +1 (up more than 2%), -1 (down more than 2%) or 0.

    OHLC metrics are left out. normalized_score is the average score as a
    percentage, in [-100, 100].
    """
    individual_scores: Dict[str, int] = {}
    metric_changes: Dict[str, float] = {}

    for metric_type, summary in summaries.items():
        if metric_type in OHLC_METRIC_TYPES or summary is None:
            continue
        change = summary.get("percent_change_24h")
        if change is None:
            continue
        if change > SCORE_THRESHOLD_PERCENT:
            score = 1
        elif change < -SCORE_THRESHOLD_PERCENT:
            score = -1
        else:
            score = 0
        individual_scores[metric_type] = score
        metric_changes[metric_type] = change

    total = sum(individual_scores.values())
    count = len(individual_scores)
    normalized = math.floor(total / count * 100 + 0.5) if count else 0

    return {
        "aggregate_score": total,
        "normalized_score": normalized,
        "metric_count": count,
        "individual_scores": individual_scores,
        "metric_changes": metric_changes,
    }


def due_slot(subscription: AssetSubscription, now: datetime, window_minutes: int) -> Optional[datetime]:
    """
    The scheduled slot a report is due for at `now`, or None.

    Yesterday's slot is considered too, so a late-evening window still fires
    after midnight. Weekdays are matched against the slot, not `now`.
    """
    now = now.astimezone(timezone.utc)
    window = timedelta(minutes=window_minutes)

    for report_time in subscription.report_times:
        hour, minute = (int(part) for part in report_time.split(":"))
        today = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        for slot in (today, today - timedelta(days=1)):
            if not slot <= now < slot + window:
                continue
            if WEEKDAYS[slot.weekday()] not in subscription.weekdays:
                continue
            if subscription.last_report_sent is not None and subscription.last_report_sent >= slot:
                continue
            return slot
    return None


def is_report_due(subscription: AssetSubscription, now: datetime, window_minutes: int) -> bool:
    return due_slot(subscription, now, window_minutes) is not None


def _format_value(value: float) -> str:
    if abs(value) >= 1000:
        return f"{value:,.0f}"
    return f"{value:,.4g}"


def render_report_html(report: Dict[str, Any], intro: Optional[str] = None) -> str:
    rows = []
    for metric_type, summary in sorted(report["metrics"].items()):
        if summary is None:
            continue
        change = summary["percent_change_24h"]
        color = "#16a34a" if change > 0 else "#dc2626" if change < 0 else "#6b7280"
        rows.append(
            f"<tr><td>{html.escape(metric_type)}</td>"
            f"<td style=\"text-align:right\">{_format_value(summary['current_value'])}</td>"
            f"<td style=\"text-align:right;color:{color}\">{change:+.2f}%</td></tr>"
        )

    intro_html = f"<p>{html.escape(intro)}</p>" if intro else ""
    score = report["score"]
    asset = html.escape(f"{report['asset_name']} ({report['asset_symbol'].upper()})")
    return (
        "<html><body style=\"font-family:Arial,sans-serif\">"
        f"<h2>{asset} report</h2>"
        f"{intro_html}"
        f"<p>Generated {html.escape(report['generated_at'])} UTC</p>"
        f"<p>Aggregate score: <strong>{score['normalized_score']}</strong> "
        f"({score['aggregate_score']:+d} over {score['metric_count']} metrics)</p>"
        "<table cellpadding=\"6\" style=\"border-collapse:collapse\">"
        "<tr><th align=\"left\">Metric</th><th>Value</th><th>24h</th></tr>"
        f"{''.join(rows)}</table>"
        "</body></html>"
    )


class ReportService:
    def __init__(
        self,
        asset_subscription_service: Optional[AssetSubscriptionService] = None,
        profile_service: Optional[ProfileService] = None,
        store: Optional[MetricsStore] = None,
        sender_email: Optional[str] = None,
        window_minutes: Optional[int] = None,
    ):
        self.profile_service = profile_service or ProfileService()
        self.store = store or MetricsStore()
        self.asset_subscription_service = asset_subscription_service or AssetSubscriptionService(
            profile_service=self.profile_service, metrics_store=self.store
        )
        self.sender_email = sender_email or os.environ.get("REPORT_SENDER_EMAIL", "reports@futurecast.pro")
        self.window_minutes = window_minutes or int(os.environ.get("REPORT_WINDOW_MINUTES", "15"))

    def build_report(self, subscription: AssetSubscription, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        records = self.store.get_metrics(subscription.asset_slug, since=now - timedelta(days=REPORT_LOOKBACK_DAYS))

        by_type: Dict[str, List[MetricRecord]] = defaultdict(list)
        for record in records:
            by_type[record.metric_type].append(record)
        summaries = {metric_type: summarize_metric(group) for metric_type, group in by_type.items()}

        return {
            "asset_slug": subscription.asset_slug,
            "asset_name": subscription.asset_name,
            "asset_symbol": subscription.asset_symbol,
            "generated_at": now.strftime("%Y-%m-%d %H:%M"),
            "metrics": summaries,
            "score": calculate_aggregate_score(summaries),
        }

    def send_report(
        self, email: str, report: Dict[str, Any], subject: Optional[str] = None, intro: Optional[str] = None
    ) -> str:
        response = get_ses_client().send_email(
            Source=self.sender_email,
            Destination={"ToAddresses": [email]},
            Message={
                "Subject": {"Data": subject or f"FutureCast report: {report['asset_name']}"},
                "Body": {"Html": {"Data": render_report_html(report, intro)}},
            },
        )
        return response["MessageId"]

    def send_welcome_report(self, user_id: str, asset_slug: str, now: Optional[datetime] = None) -> bool:
        """
        E-mail a first report right after a user starts tracking an asset.

        Only one welcome report is ever sent per user.

        Returns:
            bool: True if a report was sent, False if the user already had one

        Raises:
            ProfileNotFoundError: If the profile does not exist
            SubscriptionError: If the user has no e-mail or does not track the asset
        """
        now = now or datetime.now(timezone.utc)
        profile = self.profile_service.require_profile(user_id)
        if profile.welcome_report_sent:
            logger.info(f"Welcome report already sent to user {user_id}")
            return False
        if not profile.email:
            raise SubscriptionError(f"No e-mail address for user {user_id}")

        subscription = self.asset_subscription_service.get_subscription(user_id, asset_slug)
        if subscription is None:
            raise SubscriptionError(f"User {user_id} does not track {asset_slug}")

        report = self.build_report(subscription, now)
        greeting = f"Welcome to FutureCast, {profile.first_name}!" if profile.first_name else "Welcome to FutureCast!"
        self.send_report(
            profile.email,
            report,
            subject=f"Welcome to FutureCast: your first {subscription.asset_name} report",
            intro=f"{greeting} Here is your first report, the next ones follow your schedule.",
        )
        self.profile_service.update_profile(user_id, welcome_report_sent=True)
        self.asset_subscription_service.mark_report_sent(user_id, subscription.asset_slug, now)
        logger.info(f"Sent welcome report for {subscription.asset_slug} to user {user_id}")
        return True

    def send_due_reports(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        E-mail every report whose slot is open at `now`.

        Returns:
            Dict with the number sent and per-subscription errors
        """
        now = now or datetime.now(timezone.utc)
        sent: List[Dict[str, str]] = []
        errors: List[Dict[str, str]] = []

        for subscription in self.asset_subscription_service.list_all_subscriptions():
            if not is_report_due(subscription, now, self.window_minutes):
                continue

            key = f"{subscription.user_id}/{subscription.asset_slug}"
            try:
                profile = self.profile_service.get_profile(subscription.user_id)
                if profile is None or not profile.email:
                    raise SubscriptionError(f"No e-mail address for user {subscription.user_id}")

                report = self.build_report(subscription, now)
                message_id = self.send_report(profile.email, report)
                self.asset_subscription_service.mark_report_sent(subscription.user_id, subscription.asset_slug, now)
                sent.append({"subscription": key, "message_id": message_id})
                logger.info(f"Sent {subscription.asset_slug} report to user {subscription.user_id}")
            except (ClientError, BotoCoreError, SubscriptionError) as e:
                logger.error(f"Failed to send report {key}: {e}")
                errors.append({"subscription": key, "error": str(e)})

        return {"sent": len(sent), "errors": errors, "details": sent}
