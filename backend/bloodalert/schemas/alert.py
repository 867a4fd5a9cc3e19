from __future__ import annotations

from typing import Any, Dict

from ..models.alert import Alert, ShareRecord


def alert_document(alert: Alert) -> Dict[str, Any]:
    return alert.model_dump(mode="json", by_alias=True)


def shared_alert_document(alert: Alert, record: ShareRecord) -> Dict[str, Any]:
    """A shared alert as the receiving hospital sees it: only its own sharing entry."""
    document = alert.model_dump(
        mode="json",
        by_alias=True,
        exclude={"internal_notes", "notifications", "responses", "version"},
    )
    document["sharing"] = record.model_dump(mode="json")
    return document
