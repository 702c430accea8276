from typing import Dict, Any

from rawmaterial.models import TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, InvalidRequestError,
)


class TransactionLogService(BaseService):
    """Activity trail of who created, changed or deleted what."""

    model = TransactionLog

    @classmethod
    def serialize(cls, log: TransactionLog) -> Dict[str, Any]:
        return {
            "id": log.id,
            "type": log.type,
            "entity": log.entity,
            "entityId": log.entity_id,
            "userId": log.user_id,
            "description": log.description,
            "createdAt": log.created_at.isoformat(),
        }

    @classmethod
    def record(cls, type: str, entity: str, entity_id: Any,
               description: str = "", user_id: int = None) -> TransactionLog:
        return cls.model.objects.create(
            type=type,
            entity=entity,
            entity_id=str(entity_id),
            description=description,
            user_id=user_id,
        )

    @classmethod
    def list(cls,
             entity: str = None,
             type: str = None,
             user_id: int = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if entity:
            queryset = queryset.filter(entity=entity)

        if type:
            if type not in cls.model.Type.values:
                raise InvalidRequestError(f"Unknown log type: {type}", "type")
            queryset = queryset.filter(type=type)

        if user_id:
            queryset = queryset.filter(user_id=user_id)

        logs, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "logs": [cls.serialize(log) for log in logs],
            "pagination": pagination
        })
