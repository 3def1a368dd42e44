"""CLI 入口模块 -- python -m agentpm.core <command>

支持的命令：
  init-db             创建/升级 SQLite schema
  recover-executions  把进程崩溃遗留的 EXECUTING 任务回退到 ASSIGNED
"""

import asyncio
import sys

from .config import get_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m agentpm.core <command>")
        print("命令:")
        print("  init-db             创建/升级 SQLite schema")
        print("  recover-executions  回退遗留的 EXECUTING 任务")
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "recover-executions":
        asyncio.run(recover_executions())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, recover-executions")
        sys.exit(1)


async def init_database() -> None:
    """初始化数据库（create_store_group 内部执行 DDL）"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    await store_group.conn.close()
    print("初始化完成")


async def recover_executions() -> None:
    """执行遗留 EXECUTING 任务回退"""
    from .lifecycle import TaskLifecycle
    from .store import create_store_group
    from .streaming import StreamRegistry

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        lifecycle = TaskLifecycle(store_group, StreamRegistry())
        count = await lifecycle.recover_orphaned_executions()
        print(f"回退完成，处理 {count} 个任务")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
