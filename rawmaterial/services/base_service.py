import functools
import logging
from typing import Dict, Any, Optional, List, Tuple, Iterable
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import date, datetime, time

from django.db import transaction, DatabaseError
from django.db.models import F, Model
from django.utils import timezone
from django.utils.dateparse import parse_date as django_parse_date, parse_datetime

from rawmaterial.models import NumberSequence

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ServiceError(Exception):
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, code: str = None, details: Dict = None):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)


class InvalidRequestError(ServiceError):
    """Missing or malformed input, or a transition the state machine forbids."""

    code = "INVALID_REQUEST"
    status_code = 400

    def __init__(self, message: str, field: str = None, details: Dict = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details=details)
        self.field = field


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            details={"resource": resource, "identifier": str(identifier)}
        )


class ConservationViolationError(ServiceError):
    """A movement would create or destroy material."""

    code = "CONSERVATION_VIOLATION"
    status_code = 409

    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, details=details)


class InsufficientStockError(ConservationViolationError):
    def __init__(self, item_name: str, warehouse_name: str, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient stock for {item_name} at {warehouse_name}: "
            f"required {required}, available {available}",
            {
                "item": item_name,
                "warehouse": warehouse_name,
                "required": str(required),
                "available": str(available),
            }
        )


class TransactionFailedError(ServiceError):
    code = "TRANSACTION_FAILED"
    status_code = 500


def ledger_atomic(func):
    """
    Run ``func`` in one database transaction. A database failure rolls
    everything back and surfaces as ``TransactionFailedError``.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            with transaction.atomic():
                return func(*args, **kwargs)
        except ServiceError:
            raise
        except DatabaseError as e:
            logger.exception("Ledger transaction %s failed", func.__qualname__)
            raise TransactionFailedError(
                "The operation could not be completed and was rolled back",
                details={"operation": func.__name__, "reason": str(e)}
            ) from e

    return wrapper


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def error_response(message: str, code: str = "ERROR", details: Dict = None) -> Dict:
    return {
        "success": False,
        "error": message,
        "code": code,
        "details": details or {}
    }


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "perPage": per_page,
        "totalItems": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1
    }


def round_decimal(value: Decimal, places: int = 4) -> Decimal:
    if value is None:
        return ZERO
    quantize_str = "0." + "0" * places
    return value.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def parse_quantity(value: Any, field: str = "quantity", allow_zero: bool = False) -> Decimal:
    """Strict quantity parsing: finite, non-negative and (by default) non-zero."""
    if value is None or value == "" or isinstance(value, bool):
        raise InvalidRequestError(f"{field} is required", field)
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRequestError(f"{field} must be a number", field)
    if not quantity.is_finite():
        raise InvalidRequestError(f"{field} must be a number", field)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        qualifier = "zero or more" if allow_zero else "greater than zero"
        raise InvalidRequestError(f"{field} must be {qualifier}", field)
    return round_decimal(quantity)


def parse_id(value: Any, field: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise InvalidRequestError(f"{field} is required", field)
    try:
        return int(value)
    except (ValueError, TypeError):
        raise InvalidRequestError(f"{field} must be an integer id", field)


def parse_date(value: Any, field: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = django_parse_date(str(value)[:10])
    except ValueError:
        parsed = None
    if parsed is None:
        raise InvalidRequestError(f"{field} must be a date (YYYY-MM-DD)", field)
    return parsed


def parse_timestamp(value: Any, field: str) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parse_datetime(str(value))
        except ValueError:
            parsed = None
        if parsed is None:
            day = parse_date(value, field)
            parsed = datetime.combine(day, time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def require_fields(data: Dict, fields: Iterable[str]) -> None:
    missing = [field for field in fields if data.get(field) in (None, "")]
    if missing:
        raise InvalidRequestError(
            f"Missing required fields: {', '.join(missing)}",
            details={"fields": missing}
        )


def next_sequence(key: str) -> int:
    with transaction.atomic():
        sequence, _ = NumberSequence.objects.select_for_update().get_or_create(key=key)
        NumberSequence.objects.filter(pk=sequence.pk).update(last_value=F("last_value") + 1)
        sequence.refresh_from_db(fields=["last_value"])
        return sequence.last_value


def generate_number(prefix: str, width: int = 5, date_scoped: bool = False, separator: str = "") -> str:
    """
    Allocate the next human-readable number for ``prefix``.

    ``generate_number("CJ")`` -> ``CJ00001``;
    ``generate_number("PO", 4, date_scoped=True, separator="-")`` -> ``PO-20250101-0001``.
    """
    if date_scoped:
        date_part = timezone.localdate().strftime("%Y%m%d")
        key = f"{prefix}{separator}{date_part}"
    else:
        key = prefix
    seq = next_sequence(key)
    return f"{key}{separator}{seq:0{width}d}"


def isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


class BaseService:
    model = None

    @classmethod
    def resource_name(cls) -> str:
        return cls.model.__name__

    @classmethod
    def get_by_id(cls, id: int) -> Optional[Model]:
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None

    @classmethod
    def get_or_404(cls, id: int) -> Model:
        obj = cls.get_by_id(id)
        if not obj:
            raise NotFoundError(cls.resource_name(), id)
        return obj

    @classmethod
    def lock_or_404(cls, id: int) -> Model:
        try:
            return cls.model.objects.select_for_update().get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(cls.resource_name(), id)

    @classmethod
    def exists(cls, id: int) -> bool:
        return cls.model.objects.filter(id=id).exists()
