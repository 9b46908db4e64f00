"""
OpenTelemetry signal ingestion.

Traces, logs and metrics are stored as telemetry signals correlated to
executions through ``opzenix.*`` attributes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise.exceptions import BaseORMException

from ..logging import get_logger
from ..models import TelemetrySignal

logger = get_logger(__name__)

CONTEXT_KEYS = (
    "flow_id",
    "execution_id",
    "checkpoint_id",
    "node_id",
    "environment",
    "deployment_version",
)
DEFAULT_ENVIRONMENT = "development"


def extract_context(attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Correlation context from ``opzenix.<key>`` or bare ``<key>`` attributes."""
    context = {
        key: attributes.get(f"opzenix.{key}") or attributes.get(key)
        for key in CONTEXT_KEYS
    }
    context["environment"] = context["environment"] or DEFAULT_ENVIRONMENT
    return context


def signal_severity(signal: Dict[str, Any]) -> str:
    if signal.get("severity"):
        return str(signal["severity"]).lower()
    if signal.get("status_code") == "ERROR":
        return "error"
    return "info"


def signal_summary(signal: Dict[str, Any]) -> str:
    """One-line description of a signal, by signal type."""
    otel_type = signal.get("otel_type")
    if otel_type == "trace":
        span_id = str(signal.get("span_id") or "")
        summary = signal.get("message") or f"Span: {span_id[:8]}"
        if signal.get("duration_ms"):
            summary += f" ({signal['duration_ms']}ms)"
        return summary
    if otel_type == "log":
        return signal.get("message") or "Log entry"
    if otel_type == "metric":
        unit = signal.get("metric_unit") or ""
        return f"{signal.get('metric_name')}: {signal.get('metric_value')} {unit}"
    return ""


def _optional_uuid(value: Optional[Any]) -> Optional[UUID]:
    if not value:
        return None
    return value if isinstance(value, UUID) else UUID(str(value))


def _optional_str(value: Optional[Any]) -> Optional[str]:
    return None if value is None else str(value)


def _timestamp(value: Optional[Any]) -> datetime:
    """
    Parse a signal timestamp.

    Accepts ISO 8601 strings and unix epoch numbers in seconds, milliseconds
    or nanoseconds, as OTel exporters send them.

    Raises:
        ValueError: If the value is neither
    """
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e15:
            seconds /= 1e9
        elif seconds > 1e11:
            seconds /= 1e3
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TelemetryService:
    """Stores OTel style signals one by one and reports per-signal results."""

    async def store_signal(self, signal: Dict[str, Any]) -> TelemetrySignal:
        """
        Store a single signal.

        Raises:
            ValueError: If a correlation id or the timestamp is malformed
        """
        attributes = signal.get("attributes") or {}
        context = extract_context(attributes)

        return await TelemetrySignal.create(
            signal_type=signal.get("otel_type"),
            flow_id=context["flow_id"],
            execution_id=_optional_uuid(context["execution_id"]),
            checkpoint_id=_optional_uuid(context["checkpoint_id"]),
            node_id=context["node_id"],
            environment=context["environment"],
            deployment_version=context["deployment_version"],
            severity=signal_severity(signal),
            summary=signal_summary(signal),
            payload=signal.get("payload") or {},
            otel_trace_id=_optional_str(signal.get("trace_id")),
            otel_span_id=_optional_str(signal.get("span_id")),
            otel_parent_span_id=_optional_str(signal.get("parent_span_id")),
            resource_attributes=attributes.get("resource") or {},
            span_attributes=attributes.get("span") or attributes,
            duration_ms=signal.get("duration_ms"),
            status_code=_optional_str(signal.get("status_code")),
            created_at=_timestamp(signal.get("timestamp")),
        )

    async def ingest(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ingest a single signal or a ``{"signals": [...]}`` batch.

        A signal that cannot be stored is reported as failed without stopping
        the rest of the batch.

        Returns:
            ``processed``, ``successful`` and ``failed`` counts plus one result
            per signal
        """
        batch = body.get("signals")
        signals: List[Dict[str, Any]] = batch if isinstance(batch, list) else [body]

        results: List[Dict[str, Any]] = []
        for signal in signals:
            try:
                if not isinstance(signal, dict):
                    raise ValueError("Signal must be an object")
                stored = await self.store_signal(signal)
            except (ValueError, TypeError, AttributeError, BaseORMException) as e:
                logger.error(
                    "Failed to store telemetry signal",
                    signal_type=(
                        signal.get("otel_type") if isinstance(signal, dict) else None
                    ),
                    error=str(e),
                )
                results.append({"success": False, "error": str(e)})
                continue
            results.append(
                {"success": True, "id": stored.id, "signal_type": stored.signal_type}
            )

        successful = sum(1 for r in results if r["success"])
        logger.info(
            "Telemetry batch processed",
            processed=len(results),
            successful=successful,
        )
        return {
            "processed": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "results": results,
        }
