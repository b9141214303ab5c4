from __future__ import annotations

import csv
from decimal import Decimal
from io import StringIO

from app.models.payment import Payment
from app.schemas.statistics import AnalyticsResponse


def _stringify(value) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if value is None:
        return ""
    return str(value)


def _write_csv(headers: list[str], rows: list[list[str]]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def payments_to_csv(payments: list[Payment]) -> str:
    headers = [
        "payment_id",
        "transaction_ref",
        "application_number",
        "customer_name",
        "customer_email",
        "customer_phone",
        "amount",
        "currency",
        "payment_method",
        "status",
        "gateway_transaction_id",
        "failure_reason",
        "created_at",
        "completed_at",
    ]
    rows: list[list[str]] = []
    for payment in payments:
        application = payment.__dict__.get("application")
        customer = payment.__dict__.get("user")
        rows.append(
            [
                payment.payment_id,
                payment.transaction_ref,
                _stringify(application.application_number if application else None),
                _stringify(customer.full_name if customer else None),
                _stringify(customer.email if customer else None),
                _stringify(customer.phone if customer else None),
                _stringify(payment.amount),
                _stringify(payment.currency),
                _stringify(payment.payment_method),
                _stringify(payment.status),
                _stringify(payment.gateway_transaction_id),
                _stringify(payment.failure_reason),
                payment.created_at.isoformat() if payment.created_at else "",
                payment.completed_at.isoformat() if payment.completed_at else "",
            ]
        )
    return _write_csv(headers, rows)


def analytics_to_csv(analytics: AnalyticsResponse) -> str:
    """Flatten the analytics report into section/metric/value rows."""
    headers = ["section", "metric", "value"]
    overview = analytics.overview
    rows: list[list[str]] = [
        ["overview", "time_range", _stringify(analytics.time_range)],
        ["overview", "generated_at", analytics.generated_at.isoformat()],
        ["overview", "total_applications", str(overview.total_applications)],
        ["overview", "total_users", str(overview.total_users)],
        ["overview", "total_loan_amount", _stringify(overview.total_loan_amount)],
        ["overview", "approval_rate", f"{overview.approval_rate:.2f}"],
        ["overview", "avg_loan_amount", _stringify(overview.avg_loan_amount)],
    ]
    for point in analytics.trends.application_trends:
        rows.append(["application_trends", point.date.isoformat(), str(point.count)])
    for status_value, count in sorted(analytics.trends.status_distribution.items()):
        rows.append(["status_distribution", status_value, str(count)])
    for bucket in analytics.trends.loan_amount_distribution:
        rows.append(["loan_amount_distribution", bucket.range, str(bucket.count)])
    for dsa in analytics.performance.dsa_performance:
        rows.append(
            [
                "dsa_performance",
                dsa.dsa_code or dsa.name,
                f"reviews={dsa.reviews} approvals={dsa.approvals} rejections={dsa.rejections} "
                f"missed={dsa.missed} compliance={dsa.deadline_compliance:.2f}",
            ]
        )
    return _write_csv(headers, rows)
