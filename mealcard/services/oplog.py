"""
操作日志：写入 logs 表，与业务操作处于同一事务
"""

import json
from typing import Any, Dict, Optional


def record_operation(con, action: str, user_id: Optional[int], actor_id: Optional[int],
                     detail: Dict[str, Any]):
    """在当前事务内追加一条操作日志"""
    con.execute(
        "INSERT INTO logs(user_id, actor_id, action, detail_json) VALUES (?,?,?,?)",
        [user_id, actor_id, action, json.dumps(detail, ensure_ascii=False, default=str)],
    )
