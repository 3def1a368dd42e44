"""事务封装

同一连接上的多条写入（如 result 落盘 + 项目 token 汇总）在一个事务内原子提交，
失败时自动回滚。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """在退出时 commit，异常时 rollback 并继续抛出

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
    """
    try:
        yield conn
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise
