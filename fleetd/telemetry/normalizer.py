"""
Carrier record normalization.

Maps the raw vehicle records returned by each carrier API onto
TelemetrySnapshot. Malformed values are absorbed with defaults; a record
without any identifying field is skipped.
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fleetd.alerts.models import ApiSource, TelemetrySnapshot

logger = logging.getLogger(__name__)

# Field aliases per snapshot attribute, first non-empty value wins.
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    'plate': ('Placa', 'Matricula', 'PATENTE', 'plate'),
    'vehicle_code': ('IMEI', 'Codigo', 'vehicle_id', 'id'),
    'driver': ('Conductor', 'CONDUCTOR', 'driver'),
    'event': ('Evento', 'EVENTO', 'Estado', 'event'),
    'speed': ('Velocidad', 'VELOCIDAD', 'speed'),
    'latitude': ('Latitud', 'LATITUD', 'latitude'),
    'longitude': ('Longitud', 'LONGITUD', 'longitude'),
    'location': ('Ubicacion', 'Ciudad', 'Localidad', 'DIRECCION', 'location'),
    'contract': ('Contrato', 'CONTRATO', 'contract'),
    'timestamp': ('FechaGPS', 'FECHA_GPS', 'Fecha', 'UltimaPosicion', 'timestamp'),
}

VEHICLE_ID_PREFIX = {
    ApiSource.COLTRACK.value: 'COL',
    ApiSource.FAGOR.value: 'FAG',
}

TIMESTAMP_FORMATS = (
    '%d/%m/%Y %H:%M:%S',
    '%d/%m/%Y %H:%M',
    '%Y-%m-%d %H:%M:%S',
)

FAGOR_VEHICLE_TAG = 'DatosEstadoVehiculo'
FAGOR_FIELDS = (
    'Matricula', 'Codigo', 'Conductor', 'Remolque', 'EstadoUsuario', 'Estado',
    'Localidad', 'Latitud', 'Longitud', 'UltimaPosicion', 'Velocidad',
    'Kilometros', 'TiempoEstado', 'Sensores', 'Rumbo',
)


def _first(record: Dict[str, Any], attribute: str) -> Optional[Any]:
    for key in FIELD_ALIASES[attribute]:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def parse_number(value: Any) -> Optional[float]:
    """Parse a number, accepting a decimal comma; None when not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(',', '.'))
    except ValueError:
        return None


def normalize_timestamp(value: Any, fallback: datetime) -> str:
    """
    Normalize a tracker timestamp to ISO-8601.

    Day-first carrier formats are converted; values that cannot be parsed
    are kept verbatim and a missing value becomes ``fallback``.
    """
    if value is None:
        return fallback.isoformat()
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.isoformat()
    except ValueError:
        pass
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc).isoformat()
        except ValueError:
            continue
    return text


def normalize_record(record: Dict[str, Any], source: str,
                     received_at: Optional[datetime] = None) -> Optional[TelemetrySnapshot]:
    """
    Build a snapshot from one raw carrier record.

    Args:
        record: Raw record as decoded from the carrier response
        source: Carrier name (COLTRACK, FAGOR or any other label)
        received_at: Time the batch was received, used when the record
            carries no position time

    Returns:
        Snapshot, or None when the record has neither plate nor vehicle code
    """
    received_at = received_at or datetime.now(timezone.utc)
    source = str(source).upper()

    plate = _first(record, 'plate')
    code = _first(record, 'vehicle_code')
    if plate is None and code is None:
        logger.debug(f"Skipping {source} record without plate or vehicle code")
        return None

    prefix = VEHICLE_ID_PREFIX.get(source, source[:3] or 'VEH')
    vehicle_id = f"{prefix}-{plate if plate is not None else code}"

    event = _first(record, 'event')
    sensors = record.get('Sensores')
    if isinstance(sensors, str) and sensors.strip():
        event = f"{event or ''} {sensors.strip()}".strip()

    return TelemetrySnapshot(
        vehicle_id=vehicle_id,
        plate=str(plate) if plate is not None else "UNKNOWN",
        driver=_first(record, 'driver'),
        event=str(event) if event is not None else None,
        speed=parse_number(_first(record, 'speed')),
        latitude=parse_number(_first(record, 'latitude')),
        longitude=parse_number(_first(record, 'longitude')),
        location=_first(record, 'location'),
        source=source,
        contract=_first(record, 'contract'),
        timestamp=normalize_timestamp(_first(record, 'timestamp'), received_at),
    )


def normalize_records(records: List[Dict[str, Any]], source: str,
                      received_at: Optional[datetime] = None) -> List[TelemetrySnapshot]:
    """Normalize a batch of records, skipping unusable ones."""
    received_at = received_at or datetime.now(timezone.utc)
    snapshots = []
    for record in records:
        if not isinstance(record, dict):
            continue
        snapshot = normalize_record(record, source, received_at)
        if snapshot is not None:
            snapshots.append(snapshot)
    return snapshots


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def parse_fagor_xml(xml_text: str) -> List[Dict[str, str]]:
    """
    Extract vehicle records from a FAGOR fleet-state SOAP response.

    Raises:
        ValueError: If the document is not well-formed XML
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"Invalid FAGOR response: {e}") from e

    records = []
    for node in root.iter():
        if _local_name(node.tag) != FAGOR_VEHICLE_TAG:
            continue
        values = {_local_name(child.tag): (child.text or '').strip() for child in node}
        records.append({name: values.get(name, '') for name in FAGOR_FIELDS})
    return records
