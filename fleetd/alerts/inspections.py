"""
Pre-operational inspection crossings.

Inspection reports are uploaded as CSV exports of the inspection system.
Crossing a day's report with the ignition events recorded by the refresh
cycle tells, for every engine start, whether the vehicle was inspected
before it (ok), after it (late) or not at all. Crossings are stored as
Inspection records and fall under the inspections retention policy.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
import structlog

from fleetd.storage.gateway import GatewayResult, PersistenceGateway
from .models import IgnitionEvent, IgnitionEventType, Inspection, InspectionReport, InspectionStatus

logger = structlog.get_logger(__name__)

# Report field -> accepted column headers
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    'key': ("Llave", "llave", "LLAVE"),
    'date': ("Fecha", "fecha", "FECHA"),
    'plate': ("Matrícula", "Matricula", "matricula", "Placa", "placa"),
    'driver': ("Conductor", "conductor"),
    'inspected_at': ("Fecha y hora inspección", "Fecha y Hora Inspección", "fecha_hora_inspeccion"),
    'findings': ("Nº Hallazgos", "No Hallazgos", "num_hallazgos"),
    'state': ("Estado", "estado"),
    'contract': ("Contrato", "contrato"),
    'vehicle_type': ("Tipo de vehículos", "Tipo de vehiculos", "Tipo de Vehículo", "tipo_vehiculo"),
}

REQUIRED_FIELDS = ('date', 'plate')

MAX_REPORT_ROWS = 3000


class InspectionLoadError(Exception):
    """The inspection report could not be read or holds no usable rows."""
    pass


def normalize_plate(plate: str) -> str:
    return str(plate).upper().replace(" ", "").replace("-", "")


def _resolve_columns(frame: pd.DataFrame) -> Dict[str, str]:
    resolved = {}
    for name, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in frame.columns:
                resolved[name] = alias
                break
    return resolved


def _parse_datetimes(values: pd.Series) -> pd.Series:
    """ISO dates first, then day-first local formats (20/05/2024 06:30)."""
    parsed = pd.to_datetime(values, errors='coerce', utc=True, format='ISO8601')
    rest = parsed.isna() & (values.str.strip() != "")
    if rest.any():
        parsed[rest] = pd.to_datetime(values[rest], errors='coerce', utc=True,
                                      dayfirst=True, format='mixed')
    return parsed


def _text(value) -> Optional[str]:
    text = str(value).strip()
    return text or None


def load_inspection_reports(path: Union[str, Path],
                            start: Optional[date] = None,
                            end: Optional[date] = None,
                            limit: int = MAX_REPORT_ROWS) -> List[InspectionReport]:
    """
    Read an inspection report CSV.

    Rows without a plate or a readable date are skipped. Rows outside
    ``[start, end]`` are dropped and at most ``limit`` rows are returned.

    Raises:
        InspectionLoadError: unreadable file, missing columns, or no row in range
    """
    path = Path(path)
    try:
        frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, ValueError) as e:
        raise InspectionLoadError(f"Cannot read inspection report {path}: {e}") from e
    if frame.empty:
        raise InspectionLoadError(f"Inspection report {path} has no rows")

    columns = _resolve_columns(frame)
    missing = [name for name in REQUIRED_FIELDS if name not in columns]
    if missing:
        raise InspectionLoadError(f"Inspection report {path} lacks columns: {', '.join(missing)}")

    frame = frame[list(columns.values())].rename(columns={v: k for k, v in columns.items()})
    days = _parse_datetimes(frame['date']).dt.date
    inspected = _parse_datetimes(frame['inspected_at']) if 'inspected_at' in frame else None
    findings = (pd.to_numeric(frame['findings'], errors='coerce').fillna(0).astype(int)
                if 'findings' in frame else None)

    reports = []
    skipped = 0
    for index, row in frame.iterrows():
        day = days[index]
        plate = _text(row['plate'])
        if plate is None or pd.isna(day):
            skipped += 1
            continue
        if (start is not None and day < start) or (end is not None and day > end):
            continue

        inspected_at = None
        if inspected is not None and not pd.isna(inspected[index]):
            inspected_at = inspected[index].to_pydatetime()
        reports.append(InspectionReport(
            plate=plate,
            inspection_date=day,
            inspected_at=inspected_at,
            key=_text(row.get('key', '')),
            driver=_text(row.get('driver', '')),
            findings=int(findings[index]) if findings is not None else 0,
            state=_text(row.get('state', '')),
            contract=_text(row.get('contract', '')),
            vehicle_type=_text(row.get('vehicle_type', '')),
        ))
        if len(reports) >= limit:
            break

    logger.info("Inspection report loaded",
                path=str(path),
                rows=len(frame),
                loaded=len(reports),
                skipped=skipped)
    if not reports:
        raise InspectionLoadError(
            f"No inspections between {start or 'the start'} and {end or 'the end'} "
            f"in {path} ({len(frame)} rows in total)"
        )
    return reports


def crossing_id(event: IgnitionEvent) -> str:
    stamp = event.occurred_at.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
    return f"{normalize_plate(event.plate)}-{stamp}"


def cross_check(events: Iterable[IgnitionEvent],
                reports: Iterable[InspectionReport],
                day: date) -> List[Inspection]:
    """
    Cross the ignition-on events of ``day`` (UTC) with that day's reports.

    A plate with several reports keeps the last one.
    """
    by_plate: Dict[str, InspectionReport] = {}
    for report in reports:
        if report.inspection_date == day:
            by_plate[normalize_plate(report.plate)] = report

    crossings = []
    for event in sorted(events, key=lambda e: e.occurred_at):
        if event.event_type != IgnitionEventType.ON:
            continue
        if event.occurred_at.astimezone(timezone.utc).date() != day:
            continue

        report = by_plate.get(normalize_plate(event.plate))
        if report is None:
            status = InspectionStatus.MISSING
        elif report.inspected_at is not None and report.inspected_at < event.occurred_at:
            status = InspectionStatus.OK
        else:
            status = InspectionStatus.LATE

        crossings.append(Inspection(
            id=crossing_id(event),
            plate=event.plate,
            inspected_at=(report.inspected_at if report and report.inspected_at
                          else event.occurred_at),
            driver=event.driver or (report.driver if report else None),
            findings=report.findings if report else 0,
            state=status.value,
            contract=report.contract if report else None,
            vehicle_type=report.vehicle_type if report else None,
            ignition_at=event.occurred_at,
        ))
    return crossings


@dataclass
class CrossCheckSummary:
    """Counts of one day's crossings, overall and per contract."""
    day: date
    total: int = 0
    ok: int = 0
    missing: int = 0
    late: int = 0
    by_contract: Dict[str, Counter] = field(default_factory=dict)

    def percentage(self, count: int) -> float:
        return round(100.0 * count / self.total, 2) if self.total else 0.0


def summarize(day: date, crossings: Iterable[Inspection]) -> CrossCheckSummary:
    summary = CrossCheckSummary(day=day)
    for crossing in crossings:
        summary.total += 1
        if crossing.state == InspectionStatus.OK.value:
            summary.ok += 1
        elif crossing.state == InspectionStatus.LATE.value:
            summary.late += 1
        else:
            summary.missing += 1
        contract = crossing.contract or "unassigned"
        summary.by_contract.setdefault(contract, Counter())[crossing.state] += 1
    return summary


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(day, time.max, tzinfo=timezone.utc)
    return start, end


async def record_cross_check(gateway: PersistenceGateway,
                             reports: Iterable[InspectionReport],
                             day: date) -> GatewayResult:
    """
    Cross a day's reports with the stored ignition events and save the crossings.

    Crossings have deterministic ids, so running the check again for the
    same day replaces the earlier results. ``data`` is the list of crossings.
    """
    start, end = day_bounds(day)
    events = await gateway.list_ignition_events(start, end, event_type=IgnitionEventType.ON)
    if not events.success:
        logger.error("Ignition events unavailable", day=day.isoformat(), error=events.error)
        return GatewayResult.fail(events.error)

    crossings = cross_check(events.data, reports, day)
    for crossing in crossings:
        saved = await gateway.add_inspection(crossing)
        if not saved.success:
            logger.error("Inspection crossing not saved",
                         crossing_id=crossing.id,
                         error=saved.error)
            return GatewayResult.fail(saved.error)

    summary = summarize(day, crossings)
    logger.info("Inspection cross-check recorded",
                day=day.isoformat(),
                ignitions=summary.total,
                ok=summary.ok,
                late=summary.late,
                missing=summary.missing)
    return GatewayResult.ok(crossings)
