"""
管理员路由：全量流水审计与账本一致性检查
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from ...core.security import CurrentUser, require_admin
from ...models.transaction import Transaction
from ...services import ConsistencyService, TransactionJournal
from ..deps import get_consistency, get_journal

router = APIRouter()


@router.get("/transactions", response_model=List[Transaction])
def list_all_transactions(limit: int = Query(100, ge=1, le=500), offset: int = Query(0, ge=0),
                          user: CurrentUser = Depends(require_admin),
                          journal: TransactionJournal = Depends(get_journal)):
    return journal.list_all(limit=limit, offset=offset)


@router.get("/consistency")
def check_consistency(user: CurrentUser = Depends(require_admin),
                      consistency: ConsistencyService = Depends(get_consistency)) -> Dict[str, Any]:
    return consistency.check_ledger_consistency(user.user_id)
