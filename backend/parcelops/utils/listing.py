from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Tuple
from flask import request, abort, make_response, jsonify
from sqlalchemy.orm import Query
from parcelops.config.pagination import normalize_pagination
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace('+00:00', 'Z')


def request_pagination() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = request_pagination()
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def paginate_records(rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int, int, int]:
    """In-memory counterpart of apply_pagination for derived rows."""
    limit, offset = request_pagination()
    return rows[offset:offset + limit], len(rows), limit, offset


def compute_etag(ids: Iterable[Any], total: int, limit: int, offset: int, latest_ts: Optional[str] = '', extra: str = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}|{extra}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    """RFC 1123 HTTP-date in GMT."""
    return format_datetime(dt, usegmt=True)


def _set_validators(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        latest_c = canonicalize_timestamp(latest_ts)
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = _iso(latest_c)
    return resp


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None, extra: str = ''):
    """List response with ETag / Last-Modified validators.

    `extra` folds derivation inputs that are not row ids (e.g. the as_of clock)
    into the ETag seed.
    """
    ids = [r.get('id') for r in rows]
    latest_iso = _iso(canonicalize_timestamp(latest_ts)) if isinstance(latest_ts, datetime) else ''
    etag = compute_etag(ids, total, limit, offset, latest_iso, extra)
    resp = make_response(build_list_payload(rows, total, limit, offset))
    _set_validators(resp, etag, latest_ts if isinstance(latest_ts, datetime) else None)
    return resp, etag


def make_cached_item_response(body: Dict[str, Any], latest_ts: Optional[datetime] = None, extra: str = ''):
    """Single resource response with validators; returns a 304 when the client copy is fresh."""
    latest_iso = _iso(canonicalize_timestamp(latest_ts)) if latest_ts else ''
    etag = compute_etag([body.get('id')], 1, 1, 0, latest_iso, extra)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    resp = make_response(jsonify(body))
    _set_validators(resp, etag, latest_ts)
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


def cached_list(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None, extra: str = ''):
    """make_cached_list_response + handle_conditional; empties the body for HEAD."""
    resp, etag = make_cached_list_response(rows, total, limit, offset, latest_ts, extra)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    # ISO 8601 first, then HTTP-date
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    If-None-Match takes precedence over If-Modified-Since (RFC 9110).
    Returns a 304 response if the client copy is current, else None.
    """
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        return _set_validators(make_response('', 304), etag_value, latest_ts)
    ims_raw = request.headers.get('If-Modified-Since')
    if not inm and ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            return _set_validators(make_response('', 304), etag_value, latest_ts)
    return None
