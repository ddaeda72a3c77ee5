"""
流水查询路由：调用方只能看到自己的流水
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from ...core.security import CurrentUser, get_current_user
from ...models.transaction import Transaction
from ...services import TransactionJournal
from ..deps import get_journal

router = APIRouter()


@router.get("", response_model=List[Transaction])
def list_my_transactions(limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
                         user: CurrentUser = Depends(get_current_user),
                         journal: TransactionJournal = Depends(get_journal)):
    return journal.list_for_user(user.user_id, limit=limit, offset=offset)
