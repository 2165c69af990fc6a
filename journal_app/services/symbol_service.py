"""
Symbol Service

Read-only history of symbol CSV imports.
"""

import math
from typing import Dict

from ..errors import ValidationError
from ..models import CsvImport, CSV_IMPORT_STATUSES

HISTORY_PAGE_SIZE = 20
HISTORY_MAX_PAGE_SIZE = 100


class SymbolService:
    """Service for symbol import bookkeeping"""

    def get_csv_history(self, args) -> Dict:
        page = max(args.get('page', 1, type=int) or 1, 1)
        limit = args.get('limit', HISTORY_PAGE_SIZE, type=int) or HISTORY_PAGE_SIZE
        limit = min(max(limit, 1), HISTORY_MAX_PAGE_SIZE)

        query = CsvImport.query
        status = (args.get('status') or '').upper()
        if status:
            if status not in CSV_IMPORT_STATUSES:
                raise ValidationError({'status': [
                    f"Status must be one of {', '.join(CSV_IMPORT_STATUSES)}"]})
            query = query.filter(CsvImport.status == status)

        total = query.count()
        imports = query.order_by(CsvImport.created_at.desc(), CsvImport.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            'imports': [record.to_dict() for record in imports],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if total else 0,
            },
        }
